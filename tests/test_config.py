from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from collab_mcp.config import CollabSettings


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COLLAB_DATABASE_URL", f"sqlite:///{tmp_path / 'x.db'}")
    monkeypatch.setenv("COLLAB_POLICY_PATHS", os.pathsep.join(["one", "two"]))
    monkeypatch.setenv("COLLAB_LOG_LEVEL", "debug")
    monkeypatch.setenv("COLLAB_REAPER_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("COLLAB_FORCE_REQUIRES_OPT_IN", "true")

    settings = CollabSettings()

    assert settings.database_url.endswith("x.db")
    assert settings.policy_paths == (Path("one"), Path("two"))
    assert settings.log_level == "DEBUG"
    assert settings.reaper_interval_seconds == 0
    assert settings.force_release_requires_opt_in is True


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("COLLAB_LOG_LEVEL", "chatty"),
        ("COLLAB_STALE_SESSION_MINUTES", "0"),
        ("COLLAB_REAPER_INTERVAL_SECONDS", "-5"),
        ("COLLAB_DATABASE_URL", "  "),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        CollabSettings()
