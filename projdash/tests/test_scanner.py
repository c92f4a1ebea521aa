import json
import tempfile
import unittest
from pathlib import Path

from projdash.parsers.git_output import FIELD_SEPARATOR
from projdash.services.scanner import ProjectScanner, sort_by_activity
from projdash.models import Project
from projdash.services.vcs import CommandFailed, GitInspector


def _history(*commits: tuple[str, str, str]) -> str:
    return "".join(
        FIELD_SEPARATOR.join((hash_, message, "Dana", date)) + "\n"
        for hash_, message, date in commits
    )


class _PathKeyedVcsClient:
    """Fakes git per project directory name; unknown directories are not repositories."""

    def __init__(self, repos: dict[str, dict[str, str]], broken: set[str] | None = None):
        self.repos = repos
        self.broken = broken or set()

    async def run(self, cwd, args, timeout):
        name = Path(cwd).name
        if name in self.broken:
            raise RuntimeError("git exploded")
        responses = self.repos.get(name)
        if responses is None:
            raise CommandFailed(args, "not a git repository")
        command = " ".join(args)
        for prefix, output in responses.items():
            if command.startswith(prefix):
                return output
        raise CommandFailed(args, "no upstream configured")


def _repo(status: str = "", history: str = "", branch: str = "main") -> dict[str, str]:
    return {
        "rev-parse --git-dir": ".git\n",
        "branch --show-current": f"{branch}\n",
        "branch -a": f"{branch}\n",
        "log --all": "",
        "status --porcelain": status,
        "log -n": history,
    }


def _scanner(root: Path, client) -> ProjectScanner:
    return ProjectScanner(root, GitInspector(client), live_status_file=None)


class ProjectScannerTests(unittest.IsolatedAsyncioTestCase):
    async def test_only_repositories_are_reported(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "proj-a").mkdir()
            (root / "proj-b").mkdir()
            client = _PathKeyedVcsClient({
                "proj-a": _repo(status=" M app.py\n?? new.py\n"),
            })

            projects = await _scanner(root, client).scan_all()

            self.assertEqual(len(projects), 1)
            project = projects[0]
            self.assertEqual(project.name, "proj-a")
            self.assertEqual(project.path, str((root / "proj-a").absolute()))
            self.assertEqual(project.uncommittedChanges, 2)
            assert project.gitInfo is not None
            self.assertEqual(project.gitInfo.status.uncommitted, 2)
            self.assertEqual(project.completedTasks, [])
            self.assertEqual(project.remainingTasks, [])
            self.assertIsNone(project.summary)
            self.assertIsNone(project.lastCommit)
            self.assertTrue(project.lastActivity)

    async def test_missing_root_yields_empty_collection(self) -> None:
        scanner = _scanner(Path("/nonexistent/projdash/projects"), _PathKeyedVcsClient({}))
        self.assertEqual(await scanner.scan_all(), [])

    async def test_failing_project_is_omitted(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "good").mkdir()
            (root / "bad").mkdir()
            client = _PathKeyedVcsClient({"good": _repo(), "bad": _repo()}, broken={"bad"})

            projects = await _scanner(root, client).scan_all()

            self.assertEqual([p.name for p in projects], ["good"])

    async def test_sorted_by_last_activity(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            for name in ("old", "new", "mid"):
                (root / name).mkdir()
            client = _PathKeyedVcsClient({
                "old": _repo(history=_history(("1111111", "old work", "2026-01-01T00:00:00Z"))),
                "new": _repo(history=_history(("2222222", "new work", "2026-10-01T00:00:00Z"))),
                "mid": _repo(history=_history(("3333333", "mid work", "2026-05-01T00:00:00Z"))),
            })

            projects = await _scanner(root, client).scan_all()

            self.assertEqual([p.name for p in projects], ["new", "mid", "old"])
            self.assertEqual(projects[0].lastActivity, "2026-10-01T00:00:00Z")
            assert projects[0].lastCommit is not None
            self.assertEqual(projects[0].lastCommit.message, "new work")

    async def test_category_folders_are_expanded(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "clients" / "acme").mkdir(parents=True)
            (root / "solo").mkdir()
            (root / ".hidden").mkdir()
            client = _PathKeyedVcsClient({"acme": _repo(), "solo": _repo(), "hidden": _repo()})
            scanner = ProjectScanner(
                root, GitInspector(client), category_folders=("clients",), live_status_file=None
            )

            projects = {p.name: p for p in await scanner.scan_all()}

            self.assertEqual(set(projects), {"acme", "solo"})
            self.assertEqual(projects["acme"].category, "clients")
            self.assertIsNone(projects["solo"].category)

    async def test_task_sources_are_merged(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            project_dir = root / "tracked"
            (project_dir / ".claude").mkdir(parents=True)
            (project_dir / ".claude" / "project-status.json").write_text(
                json.dumps({"summary": "Session summary", "nextSteps": ["ship it"]}), encoding="utf-8"
            )
            (project_dir / "task_plan.md").write_text("- [ ] open item\n", encoding="utf-8")
            (project_dir / "progress.md").write_text("- [x] finished item\n", encoding="utf-8")

            projects = await _scanner(root, _PathKeyedVcsClient({"tracked": _repo()})).scan_all()

            project = projects[0]
            self.assertEqual(project.summary, "Session summary")
            self.assertEqual(project.nextSteps, "ship it")
            self.assertEqual(project.remainingTasks, ["open item"])
            self.assertEqual(project.completedTasks, ["finished item"])

    async def test_malformed_session_status_leaves_summary_absent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            project_dir = root / "tracked"
            (project_dir / ".claude").mkdir(parents=True)
            (project_dir / ".claude" / "project-status.json").write_text("not: [json", encoding="utf-8")
            (project_dir / "TODO.md").write_text("- [ ] from todo\n", encoding="utf-8")

            projects = await _scanner(root, _PathKeyedVcsClient({"tracked": _repo()})).scan_all()

            self.assertEqual(len(projects), 1)
            self.assertIsNone(projects[0].summary)
            self.assertEqual(projects[0].remainingTasks, ["from todo"])

    async def test_live_status_is_attached_by_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "projects"
            (root / "busy").mkdir(parents=True)
            status_file = Path(tmpdir) / "status.json"
            status_file.write_text(json.dumps({
                "projects": {str((root / "busy").absolute()): {"status": "working", "message": "Refactoring"}},
            }), encoding="utf-8")
            scanner = ProjectScanner(
                root, GitInspector(_PathKeyedVcsClient({"busy": _repo()})), live_status_file=status_file
            )

            projects = await scanner.scan_all()

            assert projects[0].liveStatus is not None
            self.assertEqual(projects[0].liveStatus.status, "working")

    async def test_repeated_scans_are_equal(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "stable").mkdir()
            history = _history(("abcdef0", "steady", "2026-09-09T09:00:00Z"))
            scanner = _scanner(root, _PathKeyedVcsClient({"stable": _repo(history=history)}))

            first = await scanner.scan_all()
            second = await scanner.scan_all()

            self.assertEqual(
                [p.model_dump() for p in first],
                [p.model_dump() for p in second],
            )

    async def test_scan_paths_maps_missing_and_plain_dirs_to_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "repo").mkdir()
            (root / "plain").mkdir()
            scanner = _scanner(root, _PathKeyedVcsClient({"repo": _repo()}))

            results = await scanner.scan_paths([root / "repo", root / "plain", root / "gone"])

            self.assertEqual(set(results), {str((root / n).absolute()) for n in ("repo", "plain", "gone")})
            self.assertIsNotNone(results[str((root / "repo").absolute())])
            self.assertIsNone(results[str((root / "plain").absolute())])
            self.assertIsNone(results[str((root / "gone").absolute())])


class SortByActivityTests(unittest.TestCase):
    def test_unparseable_dates_sort_last(self) -> None:
        projects = [
            Project(name="blank", path="/p/blank", lastActivity=""),
            Project(name="recent", path="/p/recent", lastActivity="2026-10-18T10:00:00Z"),
        ]
        self.assertEqual([p.name for p in sort_by_activity(projects)], ["recent", "blank"])


if __name__ == "__main__":
    unittest.main()
