from __future__ import annotations

import json
from pathlib import Path

import pytest

from dotstate.errors import StateVersionMismatch
from dotstate.ledger import LEDGER_VERSION, EncryptedFileRecord, Ledger


def test_missing_ledger_is_empty(tmp_path: Path) -> None:
    ledger = Ledger.load(tmp_path / "state.json")

    assert ledger.dotfiles == set()
    assert ledger.environment == {"user": set(), "machine": set()}
    assert ledger.path_entries["machine"]["append"] == set()
    assert ledger.encrypted_files == {}
    assert ledger.tasks == {}


@pytest.mark.parametrize("content", ["", "   \n", "{not json", "[1, 2, 3]", '"text"'])
def test_corrupt_ledger_recovers_empty(tmp_path: Path, content: str, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "state.json"
    path.write_text(content)

    ledger = Ledger.load(path)

    assert ledger.to_dict() == Ledger.empty(path).to_dict()
    assert "empty state" in caplog.text


def test_invalid_section_shape_recovers_empty(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"version": LEDGER_VERSION, "encrypted_files": {"~/.ssh/id": "oops"}}))

    ledger = Ledger.load(path)

    assert ledger.encrypted_files == {}


def test_version_mismatch_raises(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"version": 2, "dotfiles": []}))

    with pytest.raises(StateVersionMismatch) as excinfo:
        Ledger.load(path)

    assert excinfo.value.found == 2
    assert excinfo.value.supported == LEDGER_VERSION


def test_missing_version_is_a_mismatch(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"dotfiles": ["~/.gitconfig"]}))

    with pytest.raises(StateVersionMismatch):
        Ledger.load(path)


def test_save_and_reload(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    ledger = Ledger.empty(path)
    ledger.dotfiles |= {"~/.gitconfig", "~/.config/empty/"}
    ledger.environment["user"].add("EDITOR")
    ledger.path_entries["user"]["prepend"].add("%USERPROFILE%\\bin")
    ledger.encrypted_files["~/.ssh/id_ed25519"] = EncryptedFileRecord("aaa", "bbb")
    ledger.update_task_items("git_config", added={"user.name"}, removed=set())
    ledger.save()

    payload = json.loads(path.read_text())
    assert payload["version"] == LEDGER_VERSION
    assert payload["dotfiles"] == ["~/.config/empty/", "~/.gitconfig"]
    assert payload["path"]["user"]["prepend"] == ["%USERPROFILE%\\bin"]
    assert payload["encrypted_files"]["~/.ssh/id_ed25519"] == {"source_hash": "aaa", "target_hash": "bbb"}
    assert payload["tasks"] == {"git_config": {"items": ["user.name"]}}

    reloaded = Ledger.load(path)
    assert reloaded.to_dict() == ledger.to_dict()
    assert not list(path.parent.glob("*.tmp"))


def test_task_items_dropped_when_empty(tmp_path: Path) -> None:
    ledger = Ledger.empty(tmp_path / "state.json")
    ledger.update_task_items("vscode_extensions", added={"ms-python.python"}, removed=set())
    ledger.update_task_items("vscode_extensions", added=set(), removed={"ms-python.python"})

    assert "vscode_extensions" not in ledger.tasks
    assert ledger.task_items("vscode_extensions") == set()
