from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from collab_mcp.storage import ChromaUnavailableError


def load_diag_module():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "collab_diag.py"
    spec = importlib.util.spec_from_file_location("collab_diag_test_module", module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


@pytest.fixture
def diag(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("COLLAB_DATABASE_URL", f"sqlite:///{tmp_path / 'diag.db'}")
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))
    return load_diag_module()


def test_audit_reports_missing_chroma(diag, monkeypatch, capsys) -> None:
    class BrokenAuditLog:
        def __init__(self, *_, **__):
            pass

        def ping(self) -> bool:
            raise ChromaUnavailableError("chromadb is not installed")

    monkeypatch.setattr(diag, "ChromaAuditLog", BrokenAuditLog)

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["audit"])

    assert excinfo.value.code == 1
    assert "Chroma unavailable" in capsys.readouterr().out


def test_metrics_counts_sessions_claims_and_queue(diag, capsys) -> None:
    from collab_mcp.config import CollabSettings

    coordinator = diag.load_coordinator(CollabSettings())
    first = coordinator.start_session(project_root="/repo", name="first").session
    second = coordinator.start_session(project_root="/repo", name="second").session
    claim = coordinator.claim(first.id, intent="edit", files=["src/a.py", "src/b.py"]).claim
    done = coordinator.claim(second.id, intent="docs", files=["README.md"]).claim
    coordinator.release(second.id, done.id, status="completed")
    coordinator.join_queue(second.id, claim.id, intent="wait")
    coordinator.end_session(first.id, release_claims="complete")

    diag.cmd_metrics(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["sessions_total"] == 2
    assert payload["session_status_counts"] == {"active": 1, "terminated": 1}
    assert payload["claim_status_counts"] == {"completed": 2}
    assert payload["active_files"] == []
    assert payload["queue_entries"] == 1
    assert payload["longest_queue"] == 1


def test_claims_lists_active_claims(diag, capsys) -> None:
    from collab_mcp.config import CollabSettings

    coordinator = diag.load_coordinator(CollabSettings())
    session = coordinator.start_session(project_root="/repo", name="worker").session
    claim = coordinator.claim(session.id, intent="edit", files=["src/a.py"], priority=80).claim

    diag.main(["claims", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in payload] == [claim.id]
    assert payload[0]["priority"] == 80


def test_stale_dry_run_does_not_release(diag, capsys) -> None:
    diag.main(["stale"])

    payload = json.loads(capsys.readouterr().out)
    assert payload == {"stale_sessions": [], "applied": False}


def test_main_without_command_prints_help(diag, capsys) -> None:
    diag.main([])

    assert "Session Collab MCP diagnostics" in capsys.readouterr().out
