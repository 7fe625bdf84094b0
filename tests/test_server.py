from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from regexsmith_cli.server import create_app, parse_regex_test_body
from regexsmith_core.config import RegexsmithConfig
from regexsmith_core.errors import RequestValidationError, SandboxTimeoutError

MATCH_BODY = {
    "pattern": r"\d+",
    "flags": "g",
    "mode": "match",
    "shouldMatch": ["123"],
    "shouldNotMatch": ["abc"],
}


@pytest.fixture
def client(runtime_context):
    return TestClient(create_app(context=runtime_context))


class TestRegexTestEndpoint:
    """Tests for POST /api/regex/test."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_match(self, client, fake_service, make_output):
        fake_service.outputs.append(make_output(True))
        response = client.post("/api/regex/test", json=MATCH_BODY)
        assert response.status_code == 200
        data = response.json()
        assert data["passed"] is True
        assert data["sandboxId"] == "sb-1"
        assert data["runtime"] == "javascript"
        assert data["testMode"] == "match"

    def test_failing_pattern_is_still_200(self, client, fake_service, make_output):
        fake_service.outputs.append(make_output(False))
        response = client.post("/api/regex/test", json=MATCH_BODY)
        assert response.status_code == 200
        assert response.json()["passed"] is False

    def test_sandbox_reuse(self, client, fake_service, make_output):
        fake_service.default = make_output(True)
        first = client.post("/api/regex/test", json=MATCH_BODY).json()
        second = client.post(
            "/api/regex/test", json={**MATCH_BODY, "sandboxId": first["sandboxId"]}
        ).json()
        assert second["sandboxId"] == first["sandboxId"]
        assert len(fake_service.created) == 1

    def test_capture(self, client, fake_service, make_output):
        fake_service.outputs.append(make_output(True, test_mode="capture", total=1))
        response = client.post("/api/regex/test", json={
            "pattern": r"(\d{4})-(\d{2})-(\d{2})",
            "mode": "capture",
            "runtime": "python",
            "captureTests": [
                {"input": "2024-01-15", "expectedGroups": ["2024", "01", "15"]},
            ],
        })
        assert response.status_code == 200
        assert response.json()["runtime"] == "python"
        assert fake_service.created[0].runtime == "python"

    def test_missing_pattern(self, client):
        response = client.post("/api/regex/test", json={"mode": "match", "shouldMatch": ["a"]})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_missing_examples(self, client):
        response = client.post("/api/regex/test", json={"pattern": "a", "mode": "match"})
        assert response.status_code == 400
        assert "at least one test case" in response.json()["error"]

    def test_invalid_json(self, client):
        response = client.post(
            "/api/regex/test", content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_syntax_error(self, client, fake_service):
        response = client.post("/api/regex/test", json={
            **MATCH_BODY, "pattern": "([", "flags": "", "runtime": "python",
        })
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "SYNTAX_ERROR"
        assert data["details"]
        assert fake_service.created == []

    def test_timeout_is_408(self, client, fake_service):
        fake_service.outputs.append(SandboxTimeoutError("Execution timed out after 10s"))
        response = client.post("/api/regex/test", json=MATCH_BODY)
        assert response.status_code == 408
        assert response.json()["code"] == "TIMEOUT_ERROR"

    def test_execution_failure_is_500(self, client, fake_service):
        fake_service.outputs.append(RuntimeError("disk full"))
        response = client.post("/api/regex/test", json=MATCH_BODY)
        assert response.status_code == 500
        assert response.json()["code"] == "EXECUTION_ERROR"

    def test_wrong_method(self, client):
        response = client.get("/api/regex/test")
        assert response.status_code == 405


class TestParseBody:
    def test_timeout_is_clamped(self):
        config = RegexsmithConfig()
        call = parse_regex_test_body({**MATCH_BODY, "timeout": 300}, config)
        assert call.timeout == 30
        call = parse_regex_test_body({**MATCH_BODY, "timeout": 0}, config)
        assert call.timeout == 1
        call = parse_regex_test_body(MATCH_BODY, config)
        assert call.timeout == 10

    def test_defaults_to_javascript(self):
        call = parse_regex_test_body(MATCH_BODY, RegexsmithConfig())
        assert call.runtime == "javascript"
        assert call.sandbox_id is None

    def test_rejects_bad_mode(self):
        with pytest.raises(RequestValidationError):
            parse_regex_test_body({**MATCH_BODY, "mode": "replace"}, RegexsmithConfig())

    def test_rejects_bad_capture_test(self):
        body = {"pattern": "a", "mode": "capture", "captureTests": [{"input": "a"}]}
        with pytest.raises(RequestValidationError, match="expectedGroups"):
            parse_regex_test_body(body, RegexsmithConfig())
