from __future__ import annotations

from pathlib import Path

import pytest

from dotstate.config import DesiredState, PathConfig, PathPositions
from dotstate.ledger import Ledger
from dotstate.reconcilers import PathReconciler, diff_path, rebuild_path
from dotstate.reconcilers.path import comparable

from .conftest import FakeEnvironmentStore, FakeRunner

ENVIRON = {"USERPROFILE": "C:\\Users\\me", "LOCALAPPDATA": "C:\\Users\\me\\AppData\\Local"}


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger.empty(tmp_path / "state.json")


@pytest.mark.parametrize(
    "entry",
    [
        "%USERPROFILE%\\bin",
        "$USERPROFILE/bin",
        "${USERPROFILE}\\bin\\",
        "c:\\users\\ME\\BIN",
        "~/bin",
        "%userprofile%\\bin",
    ],
)
def test_comparable_forms(entry: str) -> None:
    assert comparable(entry, ENVIRON) == "c:\\users\\me\\bin"


def test_unknown_variable_kept_literally() -> None:
    assert comparable("%NOPE%\\bin", ENVIRON) == "%nope%\\bin"


def test_diff_path_categories(ledger: Ledger) -> None:
    ledger.path_entries["user"]["append"] |= {"C:\\old\\tool", "%LOCALAPPDATA%\\tracked"}
    desired = PathConfig(
        user=PathPositions(
            prepend=["$USERPROFILE/bin", "~/bin"],
            append=["C:\\Users\\me\\AppData\\Local\\tracked", "C:\\already"],
        )
    )
    live = {"user": ["C:\\Windows", "%LOCALAPPDATA%\\tracked", "c:\\already\\"], "machine": []}

    plans = diff_path(desired, ledger, live, ENVIRON)

    prepend = plans[("user", "prepend")]
    append = plans[("user", "append")]
    assert [item.key for item in prepend.to_add] == ["%USERPROFILE%/bin"]
    assert [item.key for item in append.to_track] == ["C:\\already"]
    assert append.unchanged == 1
    assert [item.key for item in append.to_remove] == ["C:\\old\\tool"]
    assert plans[("machine", "append")].is_empty


def test_rebuild_path_positions() -> None:
    current = ["C:\\Windows", "C:\\old\\tool", "C:\\keep"]

    rebuilt = rebuild_path(
        current,
        prepend=["%USERPROFILE%\\bin"],
        append=["C:\\last"],
        remove=["c:\\OLD\\tool\\"],
        environ=ENVIRON,
    )

    assert rebuilt == ["%USERPROFILE%\\bin", "C:\\Windows", "C:\\keep", "C:\\last"]


def test_apply_updates_store_and_ledger(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"Path": "C:\\Windows;C:\\old\\tool"})
    ledger.path_entries["user"]["append"].add("C:\\old\\tool")
    reconciler = PathReconciler(lambda: store, FakeRunner(), ENVIRON)
    desired = DesiredState(path=PathConfig(user=PathPositions(prepend=["$USERPROFILE\\bin"], append=["C:\\Windows"])))

    plan = reconciler.diff(desired, ledger)
    changes = reconciler.apply(plan, ledger, dry_run=False)

    assert changes == 3
    assert store.values["user"]["Path"] == "%USERPROFILE%\\bin;C:\\Windows"
    assert ledger.path_entries["user"]["prepend"] == {"%USERPROFILE%\\bin"}
    assert ledger.path_entries["user"]["append"] == {"C:\\Windows"}
    assert store.notifications == 1

    assert reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True) == 0


def test_preview_does_not_touch_store(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"Path": "C:\\Windows"})
    reconciler = PathReconciler(lambda: store, FakeRunner(), ENVIRON)
    desired = DesiredState(path=PathConfig(user=PathPositions(append=["C:\\tools"])))

    assert reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True) == 1
    assert store.values["user"]["Path"] == "C:\\Windows"
    assert ledger.path_entries["user"]["append"] == set()


def test_entry_moved_between_positions_stays_on_path(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"Path": "C:\\tools;C:\\Windows"})
    ledger.path_entries["user"]["prepend"].add("C:\\tools")
    reconciler = PathReconciler(lambda: store, FakeRunner(), ENVIRON)
    desired = DesiredState(path=PathConfig(user=PathPositions(append=["C:\\tools"])))

    plan = reconciler.diff(desired, ledger)
    assert [item.key for item in plan[("user", "prepend")].to_remove] == ["C:\\tools"]
    assert [item.key for item in plan[("user", "append")].to_add] == ["C:\\tools"]
    reconciler.apply(plan, ledger, dry_run=False)

    assert store.values["user"]["Path"] == "C:\\Windows;C:\\tools"
    assert ledger.path_entries["user"]["prepend"] == set()
    assert ledger.path_entries["user"]["append"] == {"C:\\tools"}
    assert reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True) == 0


def test_entry_in_both_positions_is_added_once(ledger: Ledger) -> None:
    store = FakeEnvironmentStore(user={"Path": "C:\\Windows"})
    reconciler = PathReconciler(lambda: store, FakeRunner(), ENVIRON)
    desired = DesiredState(path=PathConfig(user=PathPositions(prepend=["C:\\tools"], append=["c:\\TOOLS\\"])))

    plan = reconciler.diff(desired, ledger)
    assert plan[("user", "append")].is_empty
    reconciler.apply(plan, ledger, dry_run=False)

    assert store.values["user"]["Path"] == "C:\\tools;C:\\Windows"
    assert ledger.path_entries["user"]["append"] == set()
    assert reconciler.apply(reconciler.diff(desired, ledger), ledger, dry_run=True) == 0
