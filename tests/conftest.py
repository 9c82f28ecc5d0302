from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

import pytest

from dotstate.context import AppContext
from dotstate.process import CommandResult, CommandRunner, raise_for_result
from dotstate.system.environment import EnvironmentStore

Handler = Callable[[list[str]], tuple[int, str, str]]

TEST_KEY = "AGE-SECRET-KEY-1TESTKEYTESTKEYTESTKEYTESTKEYTESTKEYTESTKEYTESTKEY"
CIPHER_PREFIX = "AGE-ENCRYPTED:"


class FakeRunner(CommandRunner):
    """Records commands and answers them from registered handlers."""

    def __init__(self, tools: Sequence[str] = ()) -> None:
        super().__init__()
        self.tools = set(tools)
        self.calls: list[list[str]] = []
        self._handlers: list[tuple[tuple[str, ...], Handler]] = []

    def which(self, name: str) -> str | None:
        return f"/fake/bin/{name}" if name in self.tools else None

    def on(self, prefix: Sequence[str], handler: Handler) -> None:
        self._handlers.append((tuple(prefix), handler))
        self.tools.add(prefix[0])

    def respond(self, prefix: Sequence[str], stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.on(prefix, lambda _args: (returncode, stdout, stderr))

    def run(self, args, *, check=True, input_text=None, error_patterns=()):  # noqa: ANN001
        args = list(args)
        self.calls.append(args)
        handler = self._match(args)
        returncode, stdout, stderr = handler(args) if handler else (0, "", "")
        result = CommandResult(tuple(args), returncode, stdout, stderr)
        if check:
            raise_for_result(result, error_patterns=error_patterns)
        return result

    def commands(self, program: str) -> list[list[str]]:
        return [call for call in self.calls if call[0] == program]

    def _match(self, args: list[str]) -> Handler | None:
        best: tuple[int, Handler] | None = None
        for prefix, handler in self._handlers:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > best[0]):
                best = (len(prefix), handler)
        return best[1] if best else None


def _option(args: list[str], name: str) -> str:
    return args[args.index(name) + 1]


def install_fake_age(runner: FakeRunner, *, key: str = TEST_KEY) -> None:
    """Make ``age`` "encrypt" by prefixing and "decrypt" by stripping the prefix."""

    def encrypt(args: list[str]) -> tuple[int, str, str]:
        source = Path(args[-1])
        Path(_option(args, "--output")).write_text(CIPHER_PREFIX + source.read_text())
        return 0, "", ""

    def decrypt(args: list[str]) -> tuple[int, str, str]:
        identity = Path(_option(args, "--identity")).read_text().strip()
        if identity != key:
            return 1, "", "age: error: no identity matched any of the recipients"
        text = Path(args[-1]).read_text()
        Path(_option(args, "--output")).write_text(text.removeprefix(CIPHER_PREFIX))
        return 0, "", ""

    def keygen(args: list[str]) -> tuple[int, str, str]:
        Path(_option(args, "-o")).write_text(f"# created: now\n# public key: age1fakepublickey\n{key}\n")
        return 0, "", "Public key: age1fakepublickey\n"

    runner.on(["age", "--encrypt"], encrypt)
    runner.on(["age", "--decrypt"], decrypt)
    runner.on(["age-keygen"], keygen)


def encrypt_text(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CIPHER_PREFIX + text)
    return path


class FakeEnvironmentStore(EnvironmentStore):
    def __init__(self, user: dict[str, str] | None = None, machine: dict[str, str] | None = None) -> None:
        self.values = {"user": dict(user or {}), "machine": dict(machine or {})}
        self.notifications = 0

    def get(self, scope: str, name: str) -> str | None:
        return self.values[scope].get(name)

    def set(self, scope: str, name: str, value: str) -> None:
        self.values[scope][name] = value

    def delete(self, scope: str, name: str) -> None:
        self.values[scope].pop(name, None)

    def notify_change(self) -> None:
        self.notifications += 1


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def ctx(tmp_path: Path, fake_home: Path, runner: FakeRunner) -> AppContext:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return AppContext(
        config_dir=config_dir,
        home=fake_home,
        environ={"HOME": str(fake_home), "USERPROFILE": str(fake_home)},
        runner=runner,
    )
