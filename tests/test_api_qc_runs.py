"""Tests for the /qc-runs and /email-preview API endpoints.

Each test gets its own on-disk SQLite file under ``tmp_path`` and a run
queue stand-in, so no background threads, network or LLM calls are used.
``_InlineQueue`` processes a job synchronously inside the request, which
lets a test submit a run and immediately read back its final record.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from emailqc.api.app import create_app
from emailqc.api.rate_limit import RateLimiter
from emailqc.errors import QueueFullError
from emailqc.pipeline.model import MockQcModel
from emailqc.pipeline.orchestrator import RunJob, process_run


_PREVIEW_HTML = """\
<html><head><title>Spring offer</title>
<meta name="preheader" content="Tighter spreads all month"></head>
<body><p>Trade with tighter spreads.</p>
<a href="https://tradu.com/en/offer">See the offer</a></body></html>
"""

_SUBMISSION = {
    "brazeUrl": "https://preview.example.com/p/1",
    "copyDocText": "Trade with tighter spreads.",
    "silo": "trading",
    "entity": "UK",
}


# ---------------------------------------------------------------------------
# Fixtures / stand-ins
# ---------------------------------------------------------------------------

class _RecordingQueue:
    def __init__(self) -> None:
        self.jobs: list[RunJob] = []

    def submit(self, job: RunJob) -> None:
        self.jobs.append(job)

    def shutdown(self, wait: bool = True) -> None:
        pass


class _InlineQueue(_RecordingQueue):
    def __init__(self, model, connect) -> None:
        super().__init__()
        self._model = model
        self._connect = connect

    def submit(self, job: RunJob) -> None:
        super().submit(job)
        conn = self._connect()
        try:
            process_run(conn, job, self._model, preview_fetcher=lambda url: _PREVIEW_HTML)
        finally:
            conn.close()


class _FullQueue(_RecordingQueue):
    def submit(self, job: RunJob) -> None:
        raise QueueFullError("50 run(s) already pending; try again later")


def _client(tmp_path: Path, queue_factory, limiter: RateLimiter | None = None) -> TestClient:
    app = create_app(
        db_path=tmp_path / "qc.db",
        model_client=MockQcModel(),
        run_queue_factory=queue_factory,
        rate_limiter=limiter or RateLimiter(limit=1_000, window_seconds=60),
    )
    return TestClient(app, raise_server_exceptions=True)


@pytest.fixture()
def queue() -> _RecordingQueue:
    return _RecordingQueue()


@pytest.fixture()
def client(tmp_path: Path, queue: _RecordingQueue):
    with _client(tmp_path, lambda model, connect: queue) as c:
        yield c


@pytest.fixture()
def inline_client(tmp_path: Path):
    with _client(tmp_path, _InlineQueue) as c:
        yield c


# ---------------------------------------------------------------------------
# POST /qc-runs
# ---------------------------------------------------------------------------

class TestSubmitRun:
    def test_accepted_and_queued(self, client: TestClient, queue: _RecordingQueue) -> None:
        resp = client.post("/qc-runs", json=_SUBMISSION)
        assert resp.status_code == 202
        run_id = resp.json()["id"]

        assert [job.run_id for job in queue.jobs] == [run_id]
        detail = client.get(f"/qc-runs/{run_id}").json()
        assert detail["status"] == "queued"
        assert detail["email_type"] == "marketing"
        assert detail["stage_label"] == "Queued"

    def test_missing_fields_rejected(self, client: TestClient, queue: _RecordingQueue) -> None:
        resp = client.post("/qc-runs", json={**_SUBMISSION, "silo": "   "})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "brazeUrl, copyDocText, silo, and entity are required"
        assert queue.jobs == []

    def test_invalid_email_type_rejected(self, client: TestClient) -> None:
        resp = client.post("/qc-runs", json={**_SUBMISSION, "emailType": "newsletter"})
        assert resp.status_code == 400

    def test_invalid_url_rejected(self, client: TestClient) -> None:
        resp = client.post("/qc-runs", json={**_SUBMISSION, "brazeUrl": "ftp://preview.example.com"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "brazeUrl must be a valid URL"

    def test_disallowed_preview_host_rejected(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr("emailqc.config.settings.allowed_preview_hosts", ["braze.com"])
        resp = client.post("/qc-runs", json=_SUBMISSION)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "brazeUrl host is not permitted"

    def test_copy_doc_links_extracted_from_html(self, client: TestClient, queue: _RecordingQueue) -> None:
        body = {**_SUBMISSION, "copyDocHtml": '<p><a href="https://tradu.com/en/offer">Offer</a></p>'}
        run_id = client.post("/qc-runs", json=body).json()["id"]

        assert queue.jobs[0].copy_doc_links[0].href == "https://tradu.com/en/offer"
        detail = client.get(f"/qc-runs/{run_id}").json()
        assert detail["copy_doc_links"] == [{"href": "https://tradu.com/en/offer", "label": "Offer"}]

    def test_preview_links_cleaned(self, client: TestClient, queue: _RecordingQueue) -> None:
        body = {**_SUBMISSION, "emailPreviewLinks": [" https://tradu.com/a ", "", 7]}
        client.post("/qc-runs", json=body)
        assert queue.jobs[0].email_preview_links == ("https://tradu.com/a",)

    def test_rate_limited(self, tmp_path: Path, queue: _RecordingQueue) -> None:
        limiter = RateLimiter(limit=2, window_seconds=60)
        with _client(tmp_path, lambda model, connect: queue, limiter) as c:
            codes = [c.post("/qc-runs", json=_SUBMISSION).status_code for _ in range(3)]
        assert codes == [202, 202, 429]

    def test_forwarded_for_ignored_by_default(
        self, tmp_path: Path, queue: _RecordingQueue, monkeypatch
    ) -> None:
        monkeypatch.setattr("emailqc.config.settings.trust_proxy_headers", False)
        limiter = RateLimiter(limit=2, window_seconds=60)
        with _client(tmp_path, lambda model, connect: queue, limiter) as c:
            codes = [
                c.post(
                    "/qc-runs", json=_SUBMISSION, headers={"X-Forwarded-For": f"203.0.113.{i}"}
                ).status_code
                for i in range(3)
            ]
        assert codes == [202, 202, 429]

    def test_forwarded_for_honoured_behind_proxy(
        self, tmp_path: Path, queue: _RecordingQueue, monkeypatch
    ) -> None:
        monkeypatch.setattr("emailqc.config.settings.trust_proxy_headers", True)
        limiter = RateLimiter(limit=2, window_seconds=60)
        with _client(tmp_path, lambda model, connect: queue, limiter) as c:
            codes = [
                c.post(
                    "/qc-runs", json=_SUBMISSION, headers={"X-Forwarded-For": f"203.0.113.{i}"}
                ).status_code
                for i in range(3)
            ]
            repeated = c.post(
                "/qc-runs", json=_SUBMISSION, headers={"X-Forwarded-For": "203.0.113.0, 10.0.0.1"}
            ).status_code
            third = c.post(
                "/qc-runs", json=_SUBMISSION, headers={"X-Forwarded-For": "203.0.113.0"}
            ).status_code
        assert codes == [202, 202, 202]
        assert repeated == 202
        assert third == 429

    def test_full_queue_fails_run(self, tmp_path: Path) -> None:
        with _client(tmp_path, lambda model, connect: _FullQueue()) as c:
            resp = c.post("/qc-runs", json=_SUBMISSION)
            assert resp.status_code == 503
            runs_page = c.get("/qc-runs").json()
        assert runs_page["data"][0]["status"] == "failed"


# ---------------------------------------------------------------------------
# GET /qc-runs, GET /qc-runs/{id}, PUT /qc-runs/{id}
# ---------------------------------------------------------------------------

class TestReadRuns:
    def test_list_with_meta(self, client: TestClient) -> None:
        for silo in ("trading", "trading", "invest"):
            client.post("/qc-runs", json={**_SUBMISSION, "silo": silo})

        resp = client.get("/qc-runs", params={"silo": "trading", "pageSize": 1})
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"] == {"total": 2, "page": 1, "pageSize": 1}
        assert len(body["data"]) == 1

    def test_unknown_run_is_404(self, client: TestClient) -> None:
        assert client.get("/qc-runs/does-not-exist").status_code == 404

    def test_completed_run_detail(self, inline_client: TestClient) -> None:
        run_id = inline_client.post("/qc-runs", json=_SUBMISSION).json()["id"]
        detail = inline_client.get(f"/qc-runs/{run_id}").json()

        assert detail["status"] == "completed"
        assert detail["progress"] == 100
        assert detail["summary_pass"] is True
        assert detail["model_version"] == "mock-v1"
        check = next(c for c in detail["checks"] if c["name"] == "Mock QC run")
        assert check["pass"] is True
        assert detail["links"][0]["url"] == "https://tradu.com/en/offer"
        assert detail["links"][0]["notes"] == "link_check_skipped"

    def test_rename(self, client: TestClient) -> None:
        run_id = client.post("/qc-runs", json=_SUBMISSION).json()["id"]
        resp = client.put(f"/qc-runs/{run_id}", json={"name": "  Spring offer  "})
        assert resp.status_code == 200
        assert resp.json()["run"]["name"] == "Spring offer"

    def test_rename_requires_name(self, client: TestClient) -> None:
        run_id = client.post("/qc-runs", json=_SUBMISSION).json()["id"]
        assert client.put(f"/qc-runs/{run_id}", json={"name": " "}).status_code == 400

    def test_rename_unknown(self, client: TestClient) -> None:
        assert client.put("/qc-runs/missing", json={"name": "x"}).status_code == 404


# ---------------------------------------------------------------------------
# Reviewer feedback
# ---------------------------------------------------------------------------

def _completed_run(c: TestClient) -> tuple[str, dict]:
    run_id = c.post("/qc-runs", json=_SUBMISSION).json()["id"]
    return run_id, c.get(f"/qc-runs/{run_id}").json()


class TestRunFeedback:
    def test_empty_until_set(self, client: TestClient) -> None:
        run_id = client.post("/qc-runs", json=_SUBMISSION).json()["id"]
        assert client.get(f"/qc-runs/{run_id}/feedback").json() == {"feedback": None}
        assert client.get(f"/qc-runs/{run_id}").json()["audit_feedback"] is None

    def test_set_then_clear(self, client: TestClient) -> None:
        run_id = client.post("/qc-runs", json=_SUBMISSION).json()["id"]

        resp = client.put(f"/qc-runs/{run_id}/feedback", json={"feedback": " Subject too long "})
        assert resp.status_code == 200
        assert resp.json()["feedback"]["feedback"] == "Subject too long"
        assert client.get(f"/qc-runs/{run_id}").json()["audit_feedback"]["feedback"] == "Subject too long"

        resp = client.put(f"/qc-runs/{run_id}/feedback", json={"feedback": 42})
        assert resp.json() == {"feedback": None}
        assert client.get(f"/qc-runs/{run_id}/feedback").json() == {"feedback": None}

    def test_unknown_run(self, client: TestClient) -> None:
        assert client.get("/qc-runs/missing/feedback").status_code == 404
        assert client.put("/qc-runs/missing/feedback", json={"feedback": "x"}).status_code == 404


class TestIssueTriage:
    def test_checks_expose_ids(self, inline_client: TestClient) -> None:
        _, detail = _completed_run(inline_client)
        assert detail["checks"]
        assert all(check["id"] for check in detail["checks"])
        assert all(check["issue"] is None for check in detail["checks"])

    def test_resolve_check(self, inline_client: TestClient) -> None:
        run_id, detail = _completed_run(inline_client)
        check_id = detail["checks"][0]["id"]

        resp = inline_client.put(
            f"/qc-runs/{run_id}/issues/{check_id}", json={"status": "Resolved"}
        )
        assert resp.status_code == 200
        record = resp.json()["feedback"]
        assert record["check_id"] == check_id
        assert record["status"] == "resolved"
        assert record["feedback"] is None

        refreshed = inline_client.get(f"/qc-runs/{run_id}").json()
        check = next(c for c in refreshed["checks"] if c["id"] == check_id)
        assert check["issue"] == {"status": "resolved", "feedback": None}

    def test_invalid_status(self, inline_client: TestClient) -> None:
        run_id, detail = _completed_run(inline_client)
        resp = inline_client.put(
            f"/qc-runs/{run_id}/issues/{detail['checks'][0]['id']}", json={"status": "done"}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "status must be one of open, resolved, unwanted"

    def test_unwanted_requires_feedback(self, inline_client: TestClient) -> None:
        run_id, detail = _completed_run(inline_client)
        url = f"/qc-runs/{run_id}/issues/{detail['checks'][0]['id']}"

        resp = inline_client.put(url, json={"status": "unwanted"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Feedback is required when marking an issue as unwanted"

        resp = inline_client.put(url, json={"status": "unwanted", "feedback": "False positive"})
        assert resp.status_code == 200
        assert resp.json()["feedback"]["feedback"] == "False positive"

    def test_check_from_another_run(self, inline_client: TestClient) -> None:
        _, first = _completed_run(inline_client)
        second_id, _ = _completed_run(inline_client)
        resp = inline_client.put(
            f"/qc-runs/{second_id}/issues/{first['checks'][0]['id']}", json={"status": "open"}
        )
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Check not found for this run"


# ---------------------------------------------------------------------------
# POST /email-preview
# ---------------------------------------------------------------------------

class TestEmailPreview:
    def test_parsed_preview_returned(self, client: TestClient) -> None:
        with respx.mock:
            respx.get("https://preview.example.com/p/1").mock(
                return_value=httpx.Response(200, text=_PREVIEW_HTML)
            )
            resp = client.post("/email-preview", json={"brazeUrl": "https://preview.example.com/p/1"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["subject"] == "Spring offer"
        assert body["preheader"] == "Tighter spreads all month"
        assert body["links"] == ["https://tradu.com/en/offer"]
        assert body["ctas"] == [{"label": "See the offer", "href": "https://tradu.com/en/offer"}]

    def test_upstream_failure_is_502(self, client: TestClient) -> None:
        with respx.mock:
            respx.get("https://preview.example.com/p/1").mock(return_value=httpx.Response(500))
            resp = client.post("/email-preview", json={"brazeUrl": "https://preview.example.com/p/1"})
        assert resp.status_code == 502

    def test_missing_url(self, client: TestClient) -> None:
        resp = client.post("/email-preview", json={})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "brazeUrl is required"
