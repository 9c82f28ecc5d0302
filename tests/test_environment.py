from __future__ import annotations

from pathlib import Path

import pytest

from dotstate.config import DesiredState, ScopedVariables
from dotstate.errors import PrerequisiteMissing
from dotstate.ledger import Ledger
from dotstate.reconcilers import EnvironmentReconciler, diff_environment

from .conftest import FakeEnvironmentStore, FakeRunner


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger.empty(tmp_path / "state.json")


def _reconciler(store: FakeEnvironmentStore, runner: FakeRunner | None = None) -> EnvironmentReconciler:
    return EnvironmentReconciler(lambda: store, runner or FakeRunner())


def test_diff_environment_categories(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"EDITOR": "vim", "PAGER": "less", "LANG": "C", "UNRELATED": "x"})
    ledger.environment["user"] |= {"LANG", "OLD"}
    desired = ScopedVariables(user={"EDITOR": "nvim", "PAGER": "less", "LANG": "C", "NEW": "1"})

    plans = diff_environment(desired, ledger, store.get)
    user = plans["user"]

    assert [item.key for item in user.to_add] == ["NEW"]
    assert [item.key for item in user.to_update] == ["EDITOR"]
    assert [item.key for item in user.to_track] == ["PAGER"]
    assert [item.key for item in user.to_remove] == ["OLD"]
    assert user.unchanged == 1
    assert plans["machine"].is_empty


def test_apply_writes_tracks_and_notifies_once(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"EDITOR": "vim", "PAGER": "less", "OLD": "gone soon"})
    ledger.environment["user"].add("OLD")
    reconciler = _reconciler(store)
    desired = DesiredState(environment=ScopedVariables(user={"EDITOR": "nvim", "PAGER": "less"}))

    plan = reconciler.diff(desired, ledger)
    changes = reconciler.apply(plan, ledger, dry_run=False)

    assert changes == 3
    assert store.values["user"] == {"EDITOR": "nvim", "PAGER": "less"}
    assert ledger.environment["user"] == {"EDITOR", "PAGER"}
    assert store.notifications == 1


def test_tracking_only_does_not_notify(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"PAGER": "less"})
    reconciler = _reconciler(store)
    desired = DesiredState(environment=ScopedVariables(user={"PAGER": "less"}))

    reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=False)

    assert ledger.environment["user"] == {"PAGER"}
    assert store.notifications == 0


def test_preview_leaves_store_and_ledger_alone(ledger: Ledger) -> None:
    store = FakeEnvironmentStore()
    reconciler = _reconciler(store)
    desired = DesiredState(environment=ScopedVariables(user={"EDITOR": "nvim"}))

    assert reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True) == 1
    assert store.values["user"] == {}
    assert ledger.environment["user"] == set()


def test_second_run_is_idempotent(ledger: Ledger) -> None:
    store = FakeEnvironmentStore()
    reconciler = _reconciler(store)
    desired = DesiredState(environment=ScopedVariables(user={"EDITOR": "nvim"}))
    reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=False)

    plan = reconciler.diff(desired, ledger)

    assert reconciler.apply(plan, ledger, dry_run=True) == 0


def test_machine_scope_requires_elevation_helper(ledger: Ledger) -> None:
    store = FakeEnvironmentStore()
    reconciler = _reconciler(store)
    desired = DesiredState(environment=ScopedVariables(machine={"JAVA_HOME": "C:\\Java"}))

    with pytest.raises(PrerequisiteMissing, match="gsudo"):
        reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True)


def test_machine_scope_with_elevation_helper(ledger: Ledger) -> None:
    store = FakeEnvironmentStore()
    reconciler = _reconciler(store, FakeRunner(tools=["gsudo"]))
    desired = DesiredState(environment=ScopedVariables(machine={"JAVA_HOME": "C:\\Java"}))

    reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=False)

    assert store.values["machine"] == {"JAVA_HOME": "C:\\Java"}
    assert ledger.environment["machine"] == {"JAVA_HOME"}


def test_disabled_without_config_or_ledger(ledger: Ledger) -> None:
    reconciler = _reconciler(FakeEnvironmentStore())

    assert not reconciler.enabled(DesiredState(), ledger)
    ledger.environment["machine"].add("OLD")
    assert reconciler.enabled(DesiredState(), ledger)
