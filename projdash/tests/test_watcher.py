import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from watchfiles import Change

from projdash.watcher import ChangeWatcher, EventDebouncer, ProjectWatchFilter, project_dir_for


class ProjectDirMappingTests(unittest.TestCase):
    def test_maps_nested_paths_to_project(self) -> None:
        root = Path("/srv/projects")
        self.assertEqual(project_dir_for(root, "/srv/projects/alpha/src/app.py"), root / "alpha")
        self.assertEqual(project_dir_for(root, "/srv/projects/alpha/.git/HEAD"), root / "alpha")
        self.assertEqual(project_dir_for(root, "/srv/projects/alpha"), root / "alpha")

    def test_category_folder_adds_one_level(self) -> None:
        root = Path("/srv/projects")
        self.assertEqual(
            project_dir_for(root, "/srv/projects/clients/acme/README.md", ("clients",)),
            root / "clients" / "acme",
        )
        self.assertEqual(project_dir_for(root, "/srv/projects/clients", ("clients",)), root / "clients")

    def test_outside_root_is_ignored(self) -> None:
        root = Path("/srv/projects")
        self.assertIsNone(project_dir_for(root, "/etc/passwd"))
        self.assertIsNone(project_dir_for(root, "/srv/projects"))


class ProjectWatchFilterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.root = Path("/srv/projects")
        self.watch_filter = ProjectWatchFilter(self.root, max_depth=4, category_folders=("clients",))

    def _allowed(self, relative: str) -> bool:
        return self.watch_filter(Change.modified, str(self.root / relative))

    def test_source_files_are_allowed(self) -> None:
        self.assertTrue(self._allowed("alpha/src/app.py"))
        self.assertTrue(self._allowed("alpha/task_plan.md"))
        self.assertTrue(self._allowed("clients/acme/TODO.md"))

    def test_depth_limit(self) -> None:
        self.assertTrue(self._allowed("alpha/a/b/c/file.ts"))
        self.assertFalse(self._allowed("alpha/a/b/c/d/file.ts"))

    def test_skip_dirs_and_hidden_entries(self) -> None:
        self.assertFalse(self._allowed("alpha/node_modules/pkg/index.js"))
        self.assertFalse(self._allowed("alpha/dist/bundle.js"))
        self.assertFalse(self._allowed("alpha/.venv/lib/site.py"))
        self.assertFalse(self._allowed(".cache/thing"))
        self.assertFalse(self._allowed("alpha/.env"))

    def test_git_metadata(self) -> None:
        self.assertTrue(self._allowed("alpha/.git/HEAD"))
        self.assertTrue(self._allowed("alpha/.git/refs/heads/main"))
        self.assertTrue(self._allowed("alpha/.git/packed-refs"))
        self.assertFalse(self._allowed("alpha/.git/objects/ab/cdef"))
        self.assertFalse(self._allowed("alpha/.git/index"))
        self.assertFalse(self._allowed("alpha/.git/index.lock"))
        self.assertFalse(self._allowed("alpha/.git/refs/heads/main.lock"))

    def test_session_status_directory(self) -> None:
        self.assertTrue(self._allowed("alpha/.claude/project-status.json"))
        self.assertFalse(self._allowed("alpha/.claude/.tmp/scratch"))

    def test_root_under_skip_named_directory(self) -> None:
        root = Path("/home/me/build/projects")
        watch_filter = ProjectWatchFilter(root, max_depth=4)
        self.assertTrue(watch_filter(Change.added, str(root / "alpha" / "main.py")))


class EventDebouncerTests(unittest.IsolatedAsyncioTestCase):
    async def test_burst_is_coalesced_into_one_callback(self) -> None:
        batches: list[set[Path]] = []
        debouncer = EventDebouncer(batches.append, delay=0.05)

        for _ in range(20):
            debouncer.record_event(Path("/p/alpha"))
        debouncer.record_event(Path("/p/beta"))
        self.assertEqual(debouncer.pending, frozenset({Path("/p/alpha"), Path("/p/beta")}))

        await asyncio.sleep(0.2)

        self.assertEqual(batches, [{Path("/p/alpha"), Path("/p/beta")}])
        self.assertEqual(debouncer.pending, frozenset())

    async def test_events_after_flush_start_a_new_window(self) -> None:
        batches: list[set[Path]] = []
        debouncer = EventDebouncer(batches.append, delay=0.03)

        debouncer.record_event(Path("/p/alpha"))
        await asyncio.sleep(0.15)
        debouncer.record_event(Path("/p/beta"))
        await asyncio.sleep(0.15)

        self.assertEqual(batches, [{Path("/p/alpha")}, {Path("/p/beta")}])

    async def test_async_callback_errors_are_contained(self) -> None:
        calls: list[set[Path]] = []

        async def failing(batch: set[Path]) -> None:
            calls.append(batch)
            raise RuntimeError("consumer failed")

        debouncer = EventDebouncer(failing, delay=0.01)
        debouncer.record_event(Path("/p/alpha"))
        await asyncio.sleep(0.1)

        self.assertEqual(calls, [{Path("/p/alpha")}])

    async def test_cancel_drops_pending(self) -> None:
        batches: list[set[Path]] = []
        debouncer = EventDebouncer(batches.append, delay=0.02)

        debouncer.record_event(Path("/p/alpha"))
        debouncer.cancel()
        await asyncio.sleep(0.1)

        self.assertEqual(batches, [])


class ChangeWatcherTests(unittest.IsolatedAsyncioTestCase):
    async def test_handle_changes_maps_to_projects(self) -> None:
        batches: list[set[Path]] = []
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            watcher = ChangeWatcher(root, batches.append, debounce_ms=20)

            mapped = watcher.handle_changes([
                (Change.modified, str(root / "alpha" / "src" / "a.py")),
                (Change.added, str(root / "alpha" / "src" / "b.py")),
                (Change.modified, str(root / "beta" / ".git" / "HEAD")),
                (Change.modified, "/elsewhere/file.py"),
            ])
            await asyncio.sleep(0.15)

            self.assertEqual(mapped, 3)
            self.assertEqual(batches, [{root.absolute() / "alpha", root.absolute() / "beta"}])

    async def test_start_and_stop(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            watcher = ChangeWatcher(Path(tmpdir), lambda batch: None)
            await watcher.start()
            self.assertTrue(watcher.is_running)
            await watcher.stop()
            self.assertFalse(watcher.is_running)

    async def test_backend_error_restarts_watching(self) -> None:
        batches: list[set[Path]] = []
        sessions: list[dict] = []

        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir).absolute()

            async def flaky_awatch(path, **kwargs):
                sessions.append(kwargs)
                if len(sessions) == 1:
                    raise PermissionError("Permission denied (os error 13)")
                yield {(Change.modified, str(root / "alpha" / "main.py"))}
                await kwargs["stop_event"].wait()

            watcher = ChangeWatcher(root, batches.append, debounce_ms=10, retry_delay=0.01)
            with patch("projdash.watcher.awatch", flaky_awatch):
                await watcher.start()
                await asyncio.sleep(0.2)

                self.assertTrue(watcher.is_running)
                self.assertEqual(len(sessions), 2)
                self.assertTrue(all(s["ignore_permission_denied"] for s in sessions))
                self.assertEqual(batches, [{root / "alpha"}])

                await watcher.stop()

            self.assertFalse(watcher.is_running)
            self.assertEqual(len(sessions), 2)

    async def test_missing_root_stops_quietly(self) -> None:
        watcher = ChangeWatcher(Path("/nonexistent/projdash/root"), lambda batch: None)
        await watcher.start()
        await asyncio.sleep(0.05)
        self.assertFalse(watcher.is_running)
        await watcher.stop()


if __name__ == "__main__":
    unittest.main()
