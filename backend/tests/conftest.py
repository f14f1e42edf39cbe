from __future__ import annotations

from pathlib import Path

import pytest

from studyplan.config import settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path}/test.db")
    monkeypatch.setattr(settings, "archive_root", str(tmp_path / "responses"))
    monkeypatch.setattr(settings, "archive_backend", "local")
    monkeypatch.setattr(settings, "content_root", str(tmp_path / "content"))
    monkeypatch.setattr(settings, "bedrock_validate_model_ids_on_startup", False)
