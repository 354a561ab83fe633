"""
Tests for the sync, jobs, and queues routers.
"""

from __future__ import annotations

PREFIX = "/api/v1"


def _enqueue(client, entity_id="TS-001", **body):
    return client.post(f"{PREFIX}/sync/enqueue", json={"entityId": entity_id, **body})


class TestEnqueueEndpoint:
    def test_camel_case_body(self, client):
        resp = _enqueue(client, priority="high", entityType="submission")
        assert resp.status_code == 202
        data = resp.json()["data"]
        assert data["created"] is True
        assert data["queue_name"] == "high"
        assert data["state"] == "waiting"

    def test_snake_case_body(self, client):
        resp = client.post(f"{PREFIX}/sync/enqueue", json={"entity_id": "TS-001"})
        assert resp.status_code == 202

    def test_coalesced(self, client):
        first = _enqueue(client).json()["data"]
        second = _enqueue(client).json()
        assert second["data"]["job_id"] == first["job_id"]
        assert second["data"]["created"] is False
        assert second["warnings"]

    def test_schema_rejects_unknown_priority(self, client):
        assert _enqueue(client, priority="urgent").status_code == 422

    def test_schema_rejects_extra_fields(self, client):
        assert _enqueue(client, colour="blue").status_code == 422

    def test_actor_header(self, client):
        job_id = client.post(
            f"{PREFIX}/sync/enqueue", json={"entityId": "TS-001"}, headers={"X-Actor-ID": "dana"}
        ).json()["data"]["job_id"]
        detail = client.get(f"{PREFIX}/jobs/{job_id}").json()["data"]
        assert detail["metadata"]["actor"] == "dana"


class TestBatchEndpoint:
    def test_batch(self, client):
        resp = client.post(f"{PREFIX}/sync/batch", json={"fromDate": "2026-01-01", "toDate": "2026-01-31"})
        assert resp.status_code == 202
        assert resp.json()["data"]["queue_name"] == "batch"

    def test_inverted_range_is_problem(self, client):
        resp = client.post(f"{PREFIX}/sync/batch", json={"fromDate": "2026-02-01", "toDate": "2026-01-01"})
        assert resp.status_code == 400
        assert resp.headers["content-type"] == "application/problem+json"
        assert resp.json()["detail"] == "VALIDATION_FAILED"


class TestJobsEndpoints:
    def test_list_and_filter(self, client):
        _enqueue(client, "TS-001", priority="high")
        _enqueue(client, "TS-002")
        resp = client.get(f"{PREFIX}/jobs", params={"queue": "high"})
        body = resp.json()
        assert body["page"]["total"] == 1
        assert body["data"][0]["entity_id"] == "TS-001"

    def test_state_filter_is_validated(self, client):
        assert client.get(f"{PREFIX}/jobs", params={"state": "sleeping"}).status_code == 422

    def test_get_with_events(self, client):
        job_id = _enqueue(client).json()["data"]["job_id"]
        data = client.get(f"{PREFIX}/jobs/{job_id}").json()["data"]
        assert data["job"]["id"] == job_id
        assert data["events"][0]["event_type"] == "created"

    def test_unknown_job(self, client):
        resp = client.get(f"{PREFIX}/jobs/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["detail"] == "NOT_FOUND"
        assert body["instance"].endswith("/jobs/nope")

    def test_cancel(self, client):
        job_id = _enqueue(client).json()["data"]["job_id"]
        resp = client.post(f"{PREFIX}/jobs/{job_id}/cancel")
        assert resp.json()["data"]["state"] == "cancelled"
        again = client.post(f"{PREFIX}/jobs/{job_id}/cancel")
        assert again.status_code == 409
        assert again.json()["detail"] == "INVALID_TRANSITION"


class TestQueuesEndpoints:
    def test_status(self, client):
        _enqueue(client)
        data = client.get(f"{PREFIX}/queues").json()["data"]
        assert [q["queue"] for q in data["queues"]] == ["high", "normal", "batch"]
        assert data["totals"]["counts"]["waiting"] == 1

    def test_one_queue(self, client):
        data = client.get(f"{PREFIX}/queues/normal").json()["data"]
        assert data["queue"] == "normal"
        assert data["paused"] is False

    def test_unknown_queue(self, client):
        resp = client.get(f"{PREFIX}/queues/urgent")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "NOT_FOUND"

    def test_pause_and_resume(self, client):
        paused = client.post(f"{PREFIX}/queues/high/control", json={"action": "pause"})
        assert paused.status_code == 200
        assert paused.json()["data"]["paused"] is True
        assert client.get(f"{PREFIX}/queues/high").json()["data"]["paused"] is True
        resumed = client.post(f"{PREFIX}/queues/high/control", json={"action": "resume"})
        assert resumed.json()["data"]["paused"] is False

    def test_retry_failed_on_empty_queue(self, client):
        resp = client.post(f"{PREFIX}/queues/normal/control", json={"action": "retryFailed"})
        assert resp.json()["data"] == {
            "queue_name": "normal", "action": "retry_failed", "affected": 0, "paused": None,
        }

    def test_unknown_action(self, client):
        assert client.post(f"{PREFIX}/queues/high/control", json={"action": "drain"}).status_code == 422
