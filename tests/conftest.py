"""
Shared pytest fixtures for expobuild tests.

Fixture Organization
--------------------
- **project_dir / project**: temporary Expo project with an app.json
- **runner**: FakeRunner recording every external command instead of running it
- **sleeps / fake_sleep**: records the delays the installer asks for
"""

import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from expobuild.utils.cmd.cmd_util import CommandFailed, CommandNotFound, CommandResult
from expobuild.utils.context.context import ProjectContext

DEFAULT_PROGRAMS = {"node", "npm", "expo", "eas", "java", "curl"}


class FakeRunner:
    """
    Stand-in for CommandRunner.

    Programs in `available` exist on the fake PATH. A handler registered for a
    program is called with the argument list and may raise CommandFailed or
    return a CommandResult; programs without a handler succeed.
    """

    def __init__(self, available=None):
        self.available = set(DEFAULT_PROGRAMS if available is None else available)
        self.handlers: Dict[str, Callable[[List[str]], Optional[CommandResult]]] = {}
        self.calls = []
        self.env = {}

    def which(self, program):
        return f"/usr/bin/{program}" if program in self.available else None

    def exists(self, program):
        return program in self.available

    def on(self, program, handler):
        self.handlers[program] = handler
        return self

    def fail(self, program, exit_code=1):
        def handler(args):
            raise CommandFailed(program, exit_code)

        return self.on(program, handler)

    def run(self, program, args=None, inherit_io=True, capture_stderr=True, cwd=None, timeout=None):
        args = [str(a) for a in (args or [])]
        self.calls.append({
            "program": program,
            "args": args,
            "inherit_io": inherit_io,
            "capture_stderr": capture_stderr,
            "cwd": cwd,
        })
        if program not in self.available:
            raise CommandNotFound(program)
        handler = self.handlers.get(program)
        result = handler(args) if handler else None
        if result is None:
            result = CommandResult(0, None if inherit_io else "")
        return result

    def commands(self, program=None):
        return [c["args"] for c in self.calls if program is None or c["program"] == program]

    def programs(self):
        return [c["program"] for c in self.calls]


def write_apks(path: Path, entries=("universal.apk",)):
    """Write a fake bundletool .apks container holding the given entries"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("toc.pb", b"toc")
        for name in entries:
            zf.writestr(name, b"apk-bytes:" + name.encode())


def bundletool_handler(entries=("universal.apk",), exit_code=0):
    """java handler that behaves like `bundletool build-apks`"""

    def handler(args):
        if exit_code:
            raise CommandFailed("java", exit_code)
        output = next(a.split("=", 1)[1] for a in args if a.startswith("--output="))
        write_apks(Path(output), entries)

    return handler


@pytest.fixture
def project_dir(tmp_path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    (root / "app.json").write_text('{"expo": {"name": "demo"}}')
    return root


@pytest.fixture
def home_dir(tmp_path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def project(project_dir, home_dir) -> ProjectContext:
    return ProjectContext(project_dir, env={"HOME": str(home_dir), "PATH": ""})


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def cached_bundletool(project) -> Path:
    """Pretend bundletool was downloaded before"""
    from expobuild.utils.config import BundletoolConfig

    jar = project.tools_path / BundletoolConfig().jar_name
    jar.parent.mkdir(parents=True, exist_ok=True)
    jar.write_bytes(b"jar")
    return jar
