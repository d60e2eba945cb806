"""
Tests for the telemetry endpoints.

Tests cover:
- Batch ingestion acknowledgement and idempotency
- Batch validation (422) and caller identity checks (403)
- Filtered retrieval scoped to the caller
- Per-user erasure
- Metrics exposition
"""

from datetime import datetime, timezone


def auth(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def make_event(event_id, name="open", ts="2025-01-15T10:00:00Z", user_id="user-a", properties=None):
    return {
        "eventId": event_id,
        "eventName": name,
        "timestamp": ts,
        "properties": properties or {},
        "identity": {"userId": user_id, "sessionId": "s1"},
        "platform": "ios",
    }


def post_events(client, events, user_id="user-a", **extra):
    return client.post(
        "/api/telemetry/events",
        json={"events": events, **extra},
        headers=auth(user_id),
    )


class TestIngestEndpoint:
    """Test POST /api/telemetry/events."""

    def test_accepts_batch(self, client):
        response = post_events(client, [make_event("e1"), make_event("e2")], schemaVersion="2.0.0")

        assert response.status_code == 202
        data = response.json()
        assert data["received"] == 2
        assert data["ingested"] == 2
        assert data["duplicates"] == 0
        assert data["schemaVersion"] == "2.0.0"
        assert data["timestamp"]

    def test_default_schema_version(self, client):
        response = post_events(client, [make_event("e1")])
        assert response.json()["schemaVersion"] == "1.0.0"

    def test_duplicate_event_first_payload_wins(self, client):
        post_events(client, [make_event("e1", properties={"v": 1})])
        response = post_events(client, [make_event("e1", properties={"v": 2})])

        assert response.status_code == 202
        assert response.json()["duplicates"] == 1

        events = client.get("/api/telemetry/events", headers=auth("user-a")).json()
        assert len(events) == 1
        assert events[0]["id"] == "e1"
        assert events[0]["eventProperties"] == {"v": 1}

    def test_empty_batch_rejected(self, client):
        assert post_events(client, []).status_code == 422

    def test_oversized_batch_rejected(self, client):
        events = [make_event(f"e{i}") for i in range(101)]
        assert post_events(client, events).status_code == 422

    def test_missing_event_name_rejected(self, client):
        bad = make_event("e1")
        del bad["eventName"]
        assert post_events(client, [bad]).status_code == 422

    def test_invalid_mode_rejected(self, client):
        assert post_events(client, [make_event("e1")], mode="stealth").status_code == 422

    def test_requires_caller(self, client):
        response = client.post("/api/telemetry/events", json={"events": [make_event("e1")]})
        assert response.status_code == 401

    def test_identity_of_another_user_rejected(self, client):
        response = post_events(client, [
            make_event("a1"),
            make_event("v1", user_id="victim"),
        ])

        assert response.status_code == 403
        assert response.json()["detail"] == "event identity does not match caller"
        assert client.get("/api/telemetry/events", headers=auth("victim")).json() == []
        assert client.get("/api/telemetry/events", headers=auth("user-a")).json() == []

    def test_anonymous_identity_accepted(self, client):
        response = post_events(client, [make_event("anon", user_id=None)])

        assert response.status_code == 202
        assert response.json()["ingested"] == 1


class TestQueryEndpoint:
    """Test GET /api/telemetry/events."""

    def seed(self, client):
        post_events(client, [
            make_event("e1", name="open", ts="2025-01-10T00:00:00Z"),
            make_event("e2", name="tap", ts="2025-01-12T00:00:00Z"),
            make_event("e3", name="open", ts="2025-01-14T00:00:00Z"),
        ])
        post_events(
            client,
            [make_event("b1", name="open", ts="2025-01-14T00:00:00Z", user_id="user-b")],
            user_id="user-b",
        )

    def test_returns_only_callers_events_newest_first(self, client):
        self.seed(client)

        response = client.get("/api/telemetry/events", headers=auth("user-a"))

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == ["e3", "e2", "e1"]

    def test_filters(self, client):
        self.seed(client)

        response = client.get(
            "/api/telemetry/events",
            params={
                "startDate": "2025-01-11T00:00:00Z",
                "endDate": "2025-01-14T00:00:00Z",
                "eventNames": ["open", "tap"],
                "limit": 1,
            },
            headers=auth("user-a"),
        )

        assert [e["id"] for e in response.json()] == ["e3"]

    def test_event_name_filter_repeated_param(self, client):
        self.seed(client)

        response = client.get(
            "/api/telemetry/events",
            params=[("eventNames", "tap")],
            headers=auth("user-a"),
        )

        assert [e["id"] for e in response.json()] == ["e2"]

    def test_blank_event_name_matches_everything(self, client):
        self.seed(client)

        response = client.get(
            "/api/telemetry/events",
            params={"eventNames": ""},
            headers=auth("user-a"),
        )

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == ["e3", "e2", "e1"]

    def test_inverted_range_is_empty_not_error(self, client):
        self.seed(client)

        response = client.get(
            "/api/telemetry/events",
            params={"startDate": "2025-01-14T00:00:00Z", "endDate": "2025-01-10T00:00:00Z"},
            headers=auth("user-a"),
        )

        assert response.status_code == 200
        assert response.json() == []

    def test_stored_fields(self, client):
        post_events(client, [make_event("e1")])

        stored = client.get("/api/telemetry/events", headers=auth("user-a")).json()[0]

        assert stored["userId"] == "user-a"
        assert stored["sessionId"] == "s1"
        assert stored["deviceId"] is None
        assert stored["platform"] == "ios"
        created_at = datetime.fromisoformat(stored["createdAt"].replace("Z", "+00:00"))
        assert created_at <= datetime.now(timezone.utc)


class TestEraseEndpoint:
    """Test DELETE /api/telemetry/events."""

    def test_erases_callers_events(self, client):
        post_events(client, [
            make_event("a1"),
            make_event("a2"),
        ])
        post_events(client, [make_event("b1", user_id="user-b")], user_id="user-b")

        response = client.delete("/api/telemetry/events", headers=auth("user-a"))

        assert response.status_code == 200
        assert response.json() == {"deleted": 2}
        assert client.get("/api/telemetry/events", headers=auth("user-a")).json() == []
        assert len(client.get("/api/telemetry/events", headers=auth("user-b")).json()) == 1

    def test_erase_with_nothing_stored(self, client):
        response = client.delete("/api/telemetry/events", headers=auth("user-a"))
        assert response.json() == {"deleted": 0}


class TestOperationalEndpoints:
    """Test status, health and metrics."""

    def test_health(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}
        assert client.get("/health/ready").json() == {"status": "ready", "reason": None}
        assert client.get("/status").json()["status"] == "ok"

    def test_metrics_exposes_analytics_counters(self, client):
        post_events(client, [make_event("m1"), make_event("m1")])

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert 'analytics_events_total{result="ingested"}' in body
        assert 'analytics_events_total{result="duplicate"}' in body
        assert "http_requests_total" in body

    def test_unmatched_route_uses_fixed_metric_label(self, client):
        assert client.get("/no/such/path/xyz-999").status_code == 404

        body = client.get("/metrics").text

        assert 'path="<unmatched>"' in body
        assert "xyz-999" not in body
