from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from studyplan.config import settings
from studyplan.db import PlanPersistenceError, get_plan
from studyplan.main import app
from studyplan.nova_runtime import NovaConfigurationError, NovaRuntimeError, StructuredCompletion
from studyplan.plans import FILLER_STEP
from studyplan.reconciler import NO_FILES_MESSAGE


class FakeModelClient:
    def __init__(self) -> None:
        self.structured_schemas: list[str] = []

    def ensure_configured(self) -> None:
        return None

    def invoke_structured(self, *, system_prompt, messages, schema, max_tokens) -> StructuredCompletion:
        self.structured_schemas.append(schema.name)
        if schema.name == "create_structured_summary":
            arguments = {
                "summary": "요약",
                "key_concepts": ["정렬"],
                "code_examples": [],
                "plan": [{"step": "복습", "duration_minutes": 15, "resources": ["notes.md"]}],
                "difficulty": "beginner",
            }
        else:
            arguments = {
                "summary": "계획",
                "key_concepts": ["정렬", "탐색"],
                "code_examples": ["sorted(xs)"],
                "plan": [
                    {
                        "big_todo": "기초",
                        "small_todos": [{"todo": "정렬 복습", "duration_minutes": 30, "percentage": 100}],
                    }
                ],
                "difficulty": "intermediate",
            }
        return StructuredCompletion(arguments=arguments, raw={})

    def invoke_text(self, *, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        return "1. 자유 형식 학습 계획"


@pytest.fixture()
def fake_client(monkeypatch: pytest.MonkeyPatch) -> FakeModelClient:
    client = FakeModelClient()
    monkeypatch.setattr("studyplan.main.get_nova_client", lambda: client)
    return client


def _write_subject(name: str, files: dict[str, str]) -> Path:
    root = Path(settings.content_root) / name
    for relative, text in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return root


def test_root_and_health_endpoints() -> None:
    with TestClient(app) as client:
        root = client.get("/")
        health = client.get("/health")

    assert root.status_code == 200
    assert root.json() == {"service": "studyplan-backend", "status": "running"}
    assert health.status_code == 200
    assert health.json()["status"] == "ok"


def test_structured_planning_reconciles_saves_and_archives(fake_client: FakeModelClient) -> None:
    _write_subject("Algorithms", {"sorting.md": "bubble sort", "week2/search.py": "def bsearch(): ..."})

    with TestClient(app) as client:
        response = client.post("/api/planning", json={"id": "user-1", "subjects": ["Algorithms"], "structured": True})

    assert response.status_code == 200
    body = response.json()
    plan = body["plans"]["Algorithms"]
    assert plan["summary"] == "[sorting.md] 계획\n\n[week2/search.py] 계획"
    assert plan["key_concepts"] == ["정렬", "탐색"]
    assert [group["small_todos"][0]["reference"] for group in plan["plan"]] == ["sorting.md", "week2/search.py"]
    assert fake_client.structured_schemas == ["create_structured_plan", "create_structured_plan"]

    assert body["id"] == "user-1"
    assert body["dbSaved"] is True
    stored = get_plan(body["planIds"]["Algorithms"])
    assert stored is not None
    assert stored["user_id"] == "user-1"
    assert len(stored["plan"]) == 2

    saved_path = Path(body["savedPath"])
    assert saved_path.name.startswith("user-1_structured_planning_")
    assert json.loads(saved_path.read_text(encoding="utf-8"))["plans"]["Algorithms"] == plan


def test_subject_without_files_gets_sentinel(fake_client: FakeModelClient) -> None:
    with TestClient(app) as client:
        structured = client.post("/api/planning", json={"id": "u", "subjects": ["Nothing"], "structured": True})
        plain = client.post("/api/planning", json={"id": "u", "subjects": ["Nothing"]})

    assert structured.json()["plans"]["Nothing"] == {"error": NO_FILES_MESSAGE}
    assert structured.json()["planIds"] == {}
    assert plain.json()["plans"]["Nothing"] == NO_FILES_MESSAGE
    assert fake_client.structured_schemas == []


def test_subject_path_escaping_content_root_is_rejected(fake_client: FakeModelClient, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.md").write_text("not for you", encoding="utf-8")

    with TestClient(app) as client:
        response = client.post("/api/planning", json={"id": "u", "subjects": ["../outside"], "structured": True})

    assert response.json()["plans"]["../outside"] == {"error": NO_FILES_MESSAGE}
    assert fake_client.structured_schemas == []


def test_plain_planning_returns_text(fake_client: FakeModelClient) -> None:
    _write_subject("Networks", {"tcp.md": "three-way handshake"})

    with TestClient(app) as client:
        response = client.post("/api/planning", json={"id": "u", "subjects": ["Networks"]})

    body = response.json()
    assert body["plans"]["Networks"] == "1. 자유 형식 학습 계획"
    assert body["dbSaved"] is False
    assert fake_client.structured_schemas == []


def test_source_path_plans_only_the_first_subject(fake_client: FakeModelClient, tmp_path: Path) -> None:
    source = tmp_path / "upload" / "lecture.md"
    source.parent.mkdir()
    source.write_text("uploaded lecture", encoding="utf-8")

    with TestClient(app) as client:
        response = client.post(
            "/api/planning",
            json={"id": "u", "subjects": ["Custom", "Ignored"], "structured": True, "sourcePath": str(source)},
        )

    plans = response.json()["plans"]
    assert list(plans) == ["Custom"]
    assert plans["Custom"]["plan"][0]["small_todos"][0]["reference"] == "lecture.md"


def test_persistence_failure_does_not_fail_the_request(
    fake_client: FakeModelClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_subject("Databases", {"sql.md": "joins"})

    def broken_save(user_id: str, subject: str, result: dict[str, object]) -> int:
        raise PlanPersistenceError("disk full")

    monkeypatch.setattr("studyplan.api.routers.planning.save_plan", broken_save)

    with TestClient(app) as client:
        response = client.post("/api/planning", json={"id": "u", "subjects": ["Databases"], "structured": True})

    assert response.status_code == 200
    assert response.json()["dbSaved"] is False
    assert response.json()["plans"]["Databases"]["summary"] == "[sql.md] 계획"


def test_archive_can_be_disabled(fake_client: FakeModelClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "archive_backend", "off")

    with TestClient(app) as client:
        response = client.post("/api/summarize", json={"id": "u", "subjects": ["None"]})

    assert response.json()["savedPath"] is None


def test_structured_summary_returns_three_steps(fake_client: FakeModelClient) -> None:
    _write_subject("Sorting", {"a.md": "quick sort", "b.md": "merge sort"})

    with TestClient(app) as client:
        response = client.post("/api/summarize", json={"id": "u", "subjects": ["Sorting"], "structured": True})

    assert response.status_code == 200
    summary = response.json()["summaries"]["Sorting"]
    assert summary["summary"] == "요약"
    assert [step["step"] for step in summary["plan"]] == ["복습", FILLER_STEP, FILLER_STEP]
    assert fake_client.structured_schemas == ["create_structured_summary"]
    assert Path(response.json()["savedPath"]).name.startswith("u_structured_summaries_")


def test_summary_ignores_pdf_only_subjects(fake_client: FakeModelClient) -> None:
    root = Path(settings.content_root) / "Slides"
    root.mkdir(parents=True)
    (root / "deck.pdf").write_bytes(b"%PDF-1.4")

    with TestClient(app) as client:
        response = client.post("/api/summarize", json={"id": "u", "subjects": ["Slides"], "structured": True})

    assert response.json()["summaries"]["Slides"] == {"error": NO_FILES_MESSAGE}


def test_unconfigured_runtime_returns_503(monkeypatch: pytest.MonkeyPatch) -> None:
    class UnconfiguredClient(FakeModelClient):
        def ensure_configured(self) -> None:
            raise NovaConfigurationError("BEDROCK_MODEL_ID is not configured.")

    monkeypatch.setattr("studyplan.main.get_nova_client", lambda: UnconfiguredClient())
    _write_subject("Compilers", {"lexer.md": "tokens"})

    with TestClient(app) as client:
        response = client.post("/api/planning", json={"id": "u", "subjects": ["Compilers"], "structured": True})

    assert response.status_code == 503
    assert response.json()["detail"]["message"] == "Model runtime is not configured."


def test_request_validation_errors_return_422(fake_client: FakeModelClient) -> None:
    with TestClient(app) as client:
        response = client.post("/api/planning", json={"subjects": ["x"]})
    assert response.status_code == 422


def test_signed_url_is_presigned_for_put(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []

    class FakeS3:
        def generate_presigned_url(self, operation: str, Params: dict[str, object], ExpiresIn: int) -> str:
            calls.append({"operation": operation, "params": Params, "expires": ExpiresIn})
            return "https://example-bucket.s3.amazonaws.com/upload?X-Amz-Signature=abc"

    monkeypatch.setattr("studyplan.storage.boto3.client", lambda *args, **kwargs: FakeS3())

    with TestClient(app) as client:
        response = client.post("/api/signed-url", json={"fileName": "../notes/week1.pdf", "contentType": "application/pdf"})

    assert response.status_code == 200
    body = response.json()
    assert body["method"] == "PUT"
    assert body["expiresIn"] == "5 minutes"
    assert body["key"] == "studyplan/uploads/week1.pdf"
    assert calls[0]["operation"] == "put_object"
    assert calls[0]["params"] == {
        "Bucket": settings.s3_bucket,
        "Key": "studyplan/uploads/week1.pdf",
        "ContentType": "application/pdf",
    }


def test_signed_url_failure_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    class BrokenS3:
        def generate_presigned_url(self, *args, **kwargs) -> str:
            raise RuntimeError("no credentials")

    monkeypatch.setattr("studyplan.storage.boto3.client", lambda *args, **kwargs: BrokenS3())

    with TestClient(app) as client:
        response = client.post("/api/signed-url", json={"fileName": "a.pdf", "contentType": "application/pdf"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to generate signed URL"


def test_cors_preflight_allows_configured_origin() -> None:
    with TestClient(app) as client:
        response = client.options(
            "/api/planning",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
        )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


class SubjectFailingClient(FakeModelClient):
    """Every model call for the ``Broken`` subject fails at the transport layer."""

    def invoke_structured(self, *, system_prompt, messages, schema, max_tokens) -> StructuredCompletion:
        if "Subject: Broken" in messages[0].content:
            raise NovaRuntimeError("structured down")
        return super().invoke_structured(
            system_prompt=system_prompt, messages=messages, schema=schema, max_tokens=max_tokens
        )

    def invoke_text(self, *, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        if "Subject: Broken" in user_prompt:
            raise NovaRuntimeError("text down")
        return super().invoke_text(system_prompt=system_prompt, user_prompt=user_prompt, max_tokens=max_tokens)


def test_failing_subject_does_not_affect_its_siblings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("studyplan.main.get_nova_client", lambda: SubjectFailingClient())
    _write_subject("Broken", {"bad.md": "unreachable"})
    _write_subject("Healthy", {"good.md": "reachable"})

    with TestClient(app) as client:
        structured = client.post(
            "/api/planning", json={"id": "u", "subjects": ["Broken", "Healthy"], "structured": True}
        )
        plain = client.post("/api/planning", json={"id": "u", "subjects": ["Broken", "Healthy"]})
        summaries = client.post(
            "/api/summarize", json={"id": "u", "subjects": ["Broken", "Healthy"], "structured": True}
        )

    assert structured.status_code == 200
    plans = structured.json()["plans"]
    assert plans["Broken"] == {"error": "text down"}
    assert plans["Healthy"]["summary"] == "[good.md] 계획"
    assert list(structured.json()["planIds"]) == ["Healthy"]

    assert plain.json()["plans"] == {"Broken": "Error: text down", "Healthy": "1. 자유 형식 학습 계획"}

    assert summaries.json()["summaries"]["Broken"] == {"error": "text down"}
    assert summaries.json()["summaries"]["Healthy"]["summary"] == "요약"
