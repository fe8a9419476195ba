"""Tests for the checklist-sync command line entry point.

The Confluence client and manager are patched out; these tests cover spec
loading, plan building and exit codes.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from checklist_sync.cli import (
    CLI_PROPERTY_KEY,
    MANAGED_LABEL,
    build_parser,
    build_plans,
    load_all_workgroups,
    main,
)
from checklist_sync.schemas import EnsureResult

from conftest import make_spec

SPEC_JSON = {
    "title": "WG-ADM Pre-Publication Checklist",
    "panelTitle": "Checklist (managed)",
    "sections": [
        {"heading": "Publication", "items": [{"id": "ballot-ready", "text": "Ballot content frozen"}]},
    ],
}


def _write_spec(directory: Path, name: str, data=None) -> Path:
    directory.mkdir(exist_ok=True)
    path = directory / f"{name}.json"
    path.write_text(json.dumps(data if data is not None else SPEC_JSON), encoding="utf-8")
    return path


@pytest.fixture()
def env(monkeypatch, tmp_path):
    """Isolated working directory with connection settings in the environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CONFLUENCE_BASE_URL", "https://confluence.example.org")
    monkeypatch.setenv("CONFLUENCE_PAT", "pat-0123456789abcdefghij")
    monkeypatch.setenv("SPACE_KEY", "HL7")
    for name in ("PARENT_PAGE_ID", "CONFLUENCE_USER_AGENT", "REQUEST_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    return tmp_path


@pytest.fixture()
def mocks():
    with patch("checklist_sync.cli.setup_logging") as setup_logging, \
            patch("checklist_sync.cli.ConfluenceClient") as client_cls, \
            patch("checklist_sync.cli.ChecklistManager") as manager_cls:
        yield {"setup_logging": setup_logging, "client": client_cls, "manager": manager_cls}


class TestLoading:
    """Spec files to (workgroup, spec) pairs."""

    def test_loads_camel_case_spec(self, tmp_path):
        _write_spec(tmp_path / "wg", "WG-ADM")
        [(wg_id, spec)] = load_all_workgroups(tmp_path / "wg")
        assert wg_id == "WG-ADM"
        assert spec.panel_title == "Checklist (managed)"
        assert spec.sections[0].items[0].id == "ballot-ready"

    def test_sorted_by_file_name(self, tmp_path):
        for name in ("WG-C", "WG-A", "WG-B"):
            _write_spec(tmp_path / "wg", name)
        assert [wg for wg, _ in load_all_workgroups(tmp_path / "wg")] == ["WG-A", "WG-B", "WG-C"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_all_workgroups(tmp_path / "absent")

    def test_invalid_spec(self, tmp_path):
        _write_spec(tmp_path / "wg", "WG-ADM", {"sections": [{"items": [{"id": "  "}]}]})
        with pytest.raises(ValidationError):
            load_all_workgroups(tmp_path / "wg")


class TestBuildPlans:
    def test_title_labels_and_metadata(self):
        plans = build_plans(
            [("WG-ADM", make_spec([("a", "A")])), ("WG-BAL", make_spec(title="Ballot Tasks"))],
            "HL7",
            parent_id="77",
            dry_run=True,
        )
        adm, bal = plans
        assert adm.page_title == "WG-ADM Checklist"
        assert bal.page_title == "Ballot Tasks"
        assert adm.labels == [MANAGED_LABEL, "wg-adm"]
        assert adm.property_key == CLI_PROPERTY_KEY
        assert adm.property_extra["workgroup"] == "WG-ADM"
        assert adm.property_extra["syncedAt"] == bal.property_extra["syncedAt"]
        assert adm.parent_id == "77"
        assert adm.dry_run is True
        assert adm.space_key == "HL7"


class TestMain:
    """Exit codes and wiring."""

    def test_success(self, env, mocks, capsys):
        _write_spec(env / "workgroups", "WG-ADM")
        manager = mocks["manager"].return_value
        manager.sync_workgroups.return_value = {
            "WG-ADM": EnsureResult(page_id="123", created=True),
        }

        assert main([]) == 0

        mocks["client"].assert_called_once_with(
            "https://confluence.example.org",
            "pat-0123456789abcdefghij",
            user_agent=None,
            timeout=30,
        )
        [plans] = manager.sync_workgroups.call_args.args
        assert [p.wg_id for p in plans] == ["WG-ADM"]
        assert plans[0].space_key == "HL7"
        assert json.loads(capsys.readouterr().out)["WG-ADM"]["page_id"] == "123"

    def test_flags_override_settings(self, env, mocks):
        _write_spec(env / "specs", "WG-ADM")
        mocks["manager"].return_value.sync_workgroups.return_value = {"WG-ADM": EnsureResult(page_id="1")}

        assert main([
            "--dry", "--workgroups-dir", str(env / "specs"),
            "--space-key", "OTHER", "--parent-id", "9", "--include-removed",
        ]) == 0

        [plans] = mocks["manager"].return_value.sync_workgroups.call_args.args
        assert plans[0].space_key == "OTHER"
        assert plans[0].parent_id == "9"
        assert plans[0].dry_run is True
        assert plans[0].include_removed_section is True

    def test_partial_failure_exit_code(self, env, mocks):
        _write_spec(env / "workgroups", "WG-ADM")
        _write_spec(env / "workgroups", "WG-BAL")
        mocks["manager"].return_value.sync_workgroups.return_value = {
            "WG-ADM": EnsureResult(page_id="1"),
            "WG-BAL": EnsureResult(error="HTTP 500"),
        }
        assert main([]) == 2

    def test_missing_credentials(self, env, mocks, monkeypatch):
        monkeypatch.delenv("CONFLUENCE_PAT")
        assert main([]) == 1
        mocks["client"].assert_not_called()

    def test_missing_workgroups_dir(self, env, mocks):
        assert main(["--workgroups-dir", str(env / "nope")]) == 1
        mocks["manager"].assert_not_called()

    def test_empty_workgroups_dir(self, env, mocks):
        (env / "workgroups").mkdir()
        assert main([]) == 1

    def test_invalid_spec_file(self, env, mocks):
        _write_spec(env / "workgroups", "WG-ADM", {"sections": "not a list"})
        assert main([]) == 1

    def test_logging_configured_from_settings(self, env, mocks, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.delenv("CONFLUENCE_PAT")
        main([])
        mocks["setup_logging"].assert_called_once_with(log_level="DEBUG", log_format="json")


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.dry is False
    assert args.workgroups_dir == Path("./workgroups")
    assert args.space_key is None
    assert args.include_removed is False
