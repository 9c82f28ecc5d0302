from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dotstate.context import AppContext
from dotstate.ledger import Ledger
from dotstate.tasks import (
    BUILTIN_TASKS,
    Task,
    TaskApplyResult,
    TaskBridge,
    TaskInfo,
    TaskStatus,
    list_tasks,
    load_task,
    missing_capabilities,
)
from dotstate.tasks.git_config import GitConfigTask
from dotstate.tasks.vscode_extensions import VscodeExtensionsTask

from .conftest import FakeRunner


class RecordingTask(Task):
    """In-memory task: ``live`` is the set of installed items."""

    name = "recording"
    live: set[str] = set()
    events: list[str] = []
    fail_on: str | None = None

    def info(self) -> TaskInfo:
        return TaskInfo(self.name, "test task")

    def status(self, config, items):  # noqa: ANN001, ANN201
        wanted = list(config.get("items", []))
        return TaskStatus(
            to_install=[item for item in wanted if item not in self.live],
            to_remove=sorted(item for item in items if item not in wanted),
            up_to_date=[item for item in wanted if item in self.live],
        )

    def apply(self, config, items, *, dry_run):  # noqa: ANN001, ANN201
        status = self.status(config, items)
        if not dry_run:
            for item in status.to_install:
                if item == self.fail_on:
                    raise RuntimeError(f"cannot install {item}")
                type(self).live.add(item)
            for item in status.to_remove:
                type(self).live.discard(item)
        return TaskApplyResult(installed=status.to_install, removed=status.to_remove)

    def rollback(self, config, items) -> None:  # noqa: ANN001
        type(self).events.append("rollback")

    def cleanup(self) -> None:
        type(self).events.append("cleanup")


class StatusOnlyTask(Task):
    name = "status_only"

    def info(self) -> TaskInfo:
        return TaskInfo(self.name, "no apply")

    def status(self, config, items):  # noqa: ANN001, ANN201
        return TaskStatus()


@pytest.fixture(autouse=True)
def reset_recording_task() -> None:
    RecordingTask.live = set()
    RecordingTask.events = []
    RecordingTask.fail_on = None


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger.empty(tmp_path / "state.json")


REGISTRY = {RecordingTask.name: RecordingTask, StatusOnlyTask.name: StatusOnlyTask}


def test_builtin_registry() -> None:
    assert list_tasks() == ["git_config", "vscode_extensions"]
    assert all(not missing_capabilities(task_type) for task_type in BUILTIN_TASKS.values())


def test_missing_capabilities_reported() -> None:
    assert missing_capabilities(StatusOnlyTask) == ["apply"]


def test_unknown_and_incomplete_tasks_are_skipped(ctx: AppContext, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)

    assert load_task("nope", ctx, REGISTRY) is None
    assert load_task("status_only", ctx, REGISTRY) is None
    assert "no such task" in caplog.text
    assert "missing capabilities apply" in caplog.text


def test_bridge_installs_adopts_and_records(ctx: AppContext, ledger: Ledger) -> None:
    RecordingTask.live = {"already"}
    bridge = TaskBridge(ctx, REGISTRY)

    summary = bridge.run({"recording": {"items": ["new", "already"]}}, ledger, dry_run=False)

    plan = summary.plans[0]
    assert [item.key for item in plan.to_add] == ["new"]
    assert [item.key for item in plan.to_track] == ["already"]
    assert summary.changes == 2
    assert ledger.task_items("recording") == {"new", "already"}
    assert RecordingTask.events == ["cleanup"]


def test_bridge_preview_leaves_ledger(ctx: AppContext, ledger: Ledger) -> None:
    summary = TaskBridge(ctx, REGISTRY).run({"recording": {"items": ["new"]}}, ledger, dry_run=True)

    assert summary.changes == 1
    assert RecordingTask.live == set()
    assert ledger.tasks == {}


def test_bridge_removes_items_of_dropped_task(ctx: AppContext, ledger: Ledger) -> None:
    RecordingTask.live = {"old"}
    ledger.update_task_items("recording", added={"old"}, removed=set())

    summary = TaskBridge(ctx, REGISTRY).run({}, ledger, dry_run=False)

    assert [item.key for item in summary.plans[0].to_remove] == ["old"]
    assert RecordingTask.live == set()
    assert "recording" not in ledger.tasks


def test_bridge_failure_rolls_back_and_continues(ctx: AppContext, ledger: Ledger) -> None:
    RecordingTask.fail_on = "broken"
    runner = ctx.runner
    assert isinstance(runner, FakeRunner)
    runner.respond(["git"])
    runner.respond(["git", "config", "--global", "--get"], returncode=1)
    registry = {**REGISTRY, GitConfigTask.name: GitConfigTask}

    summary = TaskBridge(ctx, registry).run(
        {"recording": {"items": ["broken"]}, "git_config": {"settings": {"core.autocrlf": False}}},
        ledger,
        dry_run=False,
    )

    assert summary.errors == ["recording: cannot install broken"]
    assert RecordingTask.events == ["rollback", "cleanup"]
    assert "recording" not in ledger.tasks
    assert ledger.task_items("git_config") == {"core.autocrlf"}
    assert ["git", "config", "--global", "core.autocrlf", "false"] in runner.calls


def test_git_config_adopts_matching_values(ctx: AppContext, runner: FakeRunner, ledger: Ledger) -> None:
    runner.respond(["git", "config", "--global", "--get", "user.name"], stdout="Someone\n")

    summary = TaskBridge(ctx).run({"git_config": {"settings": {"user.name": "Someone"}}}, ledger, dry_run=False)

    assert [item.key for item in summary.plans[0].to_track] == ["user.name"]
    assert ledger.task_items("git_config") == {"user.name"}
    assert not [call for call in runner.commands("git") if "--get" not in call]


def test_vscode_extensions_install_and_remove(ctx: AppContext, runner: FakeRunner, ledger: Ledger) -> None:
    runner.respond(["code", "--list-extensions"], stdout="ms-python.python\nesbenp.prettier-vscode\n")
    ledger.update_task_items("vscode_extensions", added={"esbenp.prettier-vscode"}, removed=set())
    task = VscodeExtensionsTask(ctx)

    result = task.apply(
        {"extensions": ["MS-Python.python", "rust-lang.rust-analyzer"]},
        ledger.task_items("vscode_extensions"),
        dry_run=False,
    )

    assert result.installed == ["rust-lang.rust-analyzer"]
    assert result.removed == ["esbenp.prettier-vscode"]
    assert runner.commands("code")[1:] == [
        ["code", "--install-extension", "rust-lang.rust-analyzer", "--force"],
        ["code", "--uninstall-extension", "esbenp.prettier-vscode"],
    ]


def test_vscode_rollback_uninstalls_this_run(ctx: AppContext, runner: FakeRunner) -> None:
    runner.respond(["code"])
    task = VscodeExtensionsTask(ctx)
    task.apply({"extensions": ["a.one", "b.two"]}, set(), dry_run=False)

    task.rollback({}, set())

    assert runner.commands("code")[-2:] == [
        ["code", "--uninstall-extension", "b.two"],
        ["code", "--uninstall-extension", "a.one"],
    ]
    assert VscodeExtensionsTask.supports_rollback()
    assert not GitConfigTask.supports_rollback()


def test_git_config_unset_of_missing_key_succeeds(ctx: AppContext, runner: FakeRunner, ledger: Ledger) -> None:
    ledger.update_task_items("git_config", added={"core.editor"}, removed=set())
    runner.respond(["git", "config", "--global", "--get"], returncode=1)
    runner.respond(["git", "config", "--global", "--unset"], returncode=5)

    summary = TaskBridge(ctx).run({"git_config": {"settings": {}}}, ledger, dry_run=False)

    assert summary.errors == []
    assert ledger.task_items("git_config") == set()


def test_git_config_failed_unset_keeps_key_tracked(ctx: AppContext, runner: FakeRunner, ledger: Ledger) -> None:
    ledger.update_task_items("git_config", added={"core.editor"}, removed=set())
    runner.respond(["git", "config", "--global", "--get"], returncode=1)
    runner.respond(
        ["git", "config", "--global", "--unset"], returncode=1, stderr="error: could not lock config file\n"
    )

    summary = TaskBridge(ctx).run({"git_config": {"settings": {}}}, ledger, dry_run=False)

    assert len(summary.errors) == 1
    assert "could not lock config file" in summary.errors[0]
    assert ledger.task_items("git_config") == {"core.editor"}
