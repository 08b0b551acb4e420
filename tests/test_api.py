"""
Tests for the REST API routes.
"""

import json
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from threadsync.api.app import app
from threadsync.api.sse import format_event
from threadsync.db.connection import get_db
from threadsync.models.db import MessageStatus

from .conftest import OWNER


def _events(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for frame in body.strip().split("\n\n"):
        name, data = None, None
        for line in frame.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


class TestAuth:
    """Tests for bearer token authentication."""

    def test_missing_token(self, api_client: TestClient):
        response = api_client.get("/threads")

        assert response.status_code == 401

    def test_malformed_header(self, api_client: TestClient):
        response = api_client.get("/threads", headers={"Authorization": "Token abc"})

        assert response.status_code == 401

    def test_invalid_token(self, api_client: TestClient):
        response = api_client.get(
            "/threads", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401


class TestThreadRoutes:
    """Tests for /threads endpoints."""

    def test_create_and_list(self, api_client, owner_headers):
        created = api_client.post(
            "/threads", json={"title": "Trip"}, headers=owner_headers
        )

        assert created.status_code == 201
        body = created.json()
        assert body["title"] == "Trip"
        assert body["user_id"] == OWNER
        assert body["visibility"] == "private"

        listed = api_client.get("/threads", headers=owner_headers)
        assert [t["id"] for t in listed.json()] == [body["id"]]

    def test_untitled_thread_has_default_title(self, api_client, owner_headers):
        created = api_client.post("/threads", json={}, headers=owner_headers)

        assert created.json()["title"] == "New Thread"

    def test_get_missing_thread(self, api_client, owner_headers):
        response = api_client.get("/threads/missing", headers=owner_headers)

        assert response.status_code == 404
        assert response.json() == {
            "detail": "Thread not found: missing",
            "error": "not_found",
        }

    def test_private_thread_forbidden(
        self, api_client, other_headers, sample_thread
    ):
        response = api_client.get(f"/threads/{sample_thread.id}", headers=other_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_visibility(self, api_client, owner_headers, other_headers, sample_thread):
        response = api_client.put(
            f"/threads/{sample_thread.id}/visibility",
            json={"visibility": "public"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        assert response.json()["visibility"] == "public"
        assert (
            api_client.get(f"/threads/{sample_thread.id}", headers=other_headers).status_code
            == 200
        )

    def test_invalid_visibility(self, api_client, owner_headers, sample_thread):
        response = api_client.put(
            f"/threads/{sample_thread.id}/visibility",
            json={"visibility": "secret"},
            headers=owner_headers,
        )

        assert response.status_code == 422

    def test_delete_thread(self, api_client, owner_headers, sample_thread, sample_messages):
        response = api_client.delete(f"/threads/{sample_thread.id}", headers=owner_headers)

        assert response.status_code == 204
        assert (
            api_client.get(f"/threads/{sample_thread.id}", headers=owner_headers).status_code
            == 404
        )

    def test_branch(self, api_client, owner_headers, sample_thread, sample_messages):
        response = api_client.post(
            f"/threads/{sample_thread.id}/branch",
            json={"anchor_message_id": sample_messages[1].id},
            headers=owner_headers,
        )

        assert response.status_code == 201
        branch = response.json()
        assert branch["origin_thread_id"] == sample_thread.id
        assert branch["title"] == "Branch of Planning"

        messages = api_client.get(
            f"/threads/{branch['id']}/messages", headers=owner_headers
        ).json()
        assert [m["content"] for m in messages] == [
            "Where should we go?",
            "How about the coast?",
        ]

    def test_branch_id_conflict(
        self, api_client, owner_headers, sample_thread, sample_messages
    ):
        response = api_client.post(
            f"/threads/{sample_thread.id}/branch",
            json={
                "anchor_message_id": sample_messages[1].id,
                "new_thread_id": sample_thread.id,
            },
            headers=owner_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_generate_title(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/generate-title",
            json={"user_query": "weekend ideas"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Weekend Trip Ideas"

    def test_generate_title_upstream_failure(
        self, api_client, owner_headers, sample_thread, title_provider
    ):
        from threadsync.exceptions import UpstreamTimeoutError

        title_provider.error = UpstreamTimeoutError("title model timed out")

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate-title",
            json={"user_query": "weekend ideas"},
            headers=owner_headers,
        )

        assert response.status_code == 504
        assert response.json()["error"] == "upstream_timeout"


class TestMessageRoutes:
    """Tests for message endpoints."""

    def test_post_and_list(self, api_client, owner_headers, sample_thread):
        created = api_client.post(
            f"/threads/{sample_thread.id}/messages",
            json={
                "role": "assistant",
                "content": "Hi",
                "annotations": [{"type": "model", "model": "anthropic/claude"}],
            },
            headers=owner_headers,
        )

        assert created.status_code == 201
        body = created.json()
        assert body["sequence"] == 1
        assert body["status"] == "done"
        assert body["model"] == "anthropic/claude"

        listed = api_client.get(
            f"/threads/{sample_thread.id}/messages", headers=owner_headers
        )
        assert [m["id"] for m in listed.json()] == [body["id"]]

    def test_post_without_content(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/messages",
            json={"role": "user"},
            headers=owner_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_update_message(self, api_client, owner_headers, sample_messages):
        response = api_client.put(
            f"/messages/{sample_messages[1].id}",
            json={"status": "error", "error_message": "boom"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["is_errored"] is True
        assert body["error_message"] == "boom"
        assert body["content"] == "How about the coast?"

    def test_update_error_message_without_error_status(
        self, api_client, owner_headers, sample_messages
    ):
        response = api_client.put(
            f"/messages/{sample_messages[1].id}",
            json={"content": "Edited", "error_message": "boom"},
            headers=owner_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_post_annotation_with_list_type(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/messages",
            json={"role": "user", "content": "Hi", "annotations": [{"type": ["model"]}]},
            headers=owner_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_delete_message(self, api_client, owner_headers, sample_thread, sample_messages):
        response = api_client.delete(
            f"/messages/{sample_messages[0].id}", headers=owner_headers
        )

        assert response.status_code == 204
        listed = api_client.get(
            f"/threads/{sample_thread.id}/messages", headers=owner_headers
        ).json()
        assert len(listed) == 3

    def test_delete_trailing(self, api_client, owner_headers, sample_thread, sample_messages):
        response = api_client.post(
            f"/messages/{sample_messages[1].id}/delete-trailing", headers=owner_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "deleted_count": 2,
            "message": "Successfully deleted 2 trailing messages.",
        }

    def test_delete_inclusive_trailing(
        self, api_client, owner_headers, sample_thread, sample_messages
    ):
        response = api_client.post(
            f"/messages/{sample_messages[1].id}/delete-inclusive-trailing",
            headers=owner_headers,
        )

        assert response.status_code == 200
        assert response.json()["deleted_count"] == 3
        listed = api_client.get(
            f"/threads/{sample_thread.id}/messages", headers=owner_headers
        ).json()
        assert [m["id"] for m in listed] == [sample_messages[0].id]

    def test_delete_trailing_not_owner(self, api_client, other_headers, sample_messages):
        response = api_client.post(
            f"/messages/{sample_messages[1].id}/delete-trailing", headers=other_headers
        )

        assert response.status_code == 403


class TestShareRoutes:
    """Tests for /shares endpoints."""

    def test_share_lifecycle(self, api_client, owner_headers, sample_thread, sample_messages):
        created = api_client.post(
            "/shares",
            json={
                "thread_id": sample_thread.id,
                "shared_up_to_message_id": sample_messages[1].id,
                "token": "weekend",
            },
            headers=owner_headers,
        )
        assert created.status_code == 201
        assert created.json()["token"] == "weekend"

        listed = api_client.get("/shares", headers=owner_headers).json()
        assert [s["token"] for s in listed] == ["weekend"]

        # No Authorization header on purpose
        shared = api_client.get("/shares/weekend/data")
        assert shared.status_code == 200
        assert shared.json()["thread"]["id"] == sample_thread.id
        assert len(shared.json()["messages"]) == 2

        deleted = api_client.delete("/shares/weekend", headers=owner_headers)
        assert deleted.status_code == 204
        assert api_client.get("/shares/weekend/data").status_code == 404

    def test_duplicate_token(self, api_client, owner_headers, sample_thread, sample_messages):
        payload = {
            "thread_id": sample_thread.id,
            "shared_up_to_message_id": sample_messages[1].id,
            "token": "dup",
        }
        api_client.post("/shares", json=payload, headers=owner_headers)

        response = api_client.post("/shares", json=payload, headers=owner_headers)

        assert response.status_code == 409


class TestGenerateRoutes:
    """Tests for generation endpoints."""

    def test_stream_events(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response.text)
        names = [name for name, _ in events]
        assert names == ["start", "delta", "delta", "delta", "done"]
        start = events[0][1]
        assert start["thread_id"] == sample_thread.id
        assert "".join(data["content"] for name, data in events if name == "delta") == (
            "Hello, world"
        )
        done = events[-1][1]
        assert done["id"] == start["assistant_message_id"]
        assert done["status"] == "done"
        assert done["content"] == "Hello, world"

    def test_stream_error_before_delivery(
        self, api_client, owner_headers, sample_thread, fake_provider
    ):
        from threadsync.exceptions import GenerationFailedError

        fake_provider.error = GenerationFailedError("overloaded", provider="fake")

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi"},
            headers=owner_headers,
        )

        events = _events(response.text)
        assert [name for name, _ in events] == ["start", "error"]
        assert events[-1][1] == {"detail": "overloaded", "error": "generation_failed"}

    def test_stream_error_after_delivery(
        self, api_client, owner_headers, sample_thread, fake_provider
    ):
        fake_provider.error = RuntimeError("reset")
        fake_provider.error_after = 1

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi"},
            headers=owner_headers,
        )

        events = _events(response.text)
        assert [name for name, _ in events] == ["start", "delta", "error"]
        assert events[-1][1]["error"] == "generation_failed"

    def test_non_streaming(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi", "stream": False},
            headers=owner_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["role"] == "assistant"
        assert body["content"] == "Hello, world"
        assert body["model"] == "openai/gpt-4o-mini"

    def test_non_streaming_timeout(
        self, api_client, owner_headers, sample_thread, fake_provider
    ):
        from threadsync.exceptions import UpstreamTimeoutError

        fake_provider.error = UpstreamTimeoutError("slow", timeout=1.0)

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi", "stream": False},
            headers=owner_headers,
        )

        assert response.status_code == 504
        messages = api_client.get(
            f"/threads/{sample_thread.id}/messages", headers=owner_headers
        ).json()
        assert messages[-1]["status"] == MessageStatus.ERROR.value
        assert messages[-1]["is_errored"] is True

    def test_generate_conflict(self, api_client, owner_headers, sample_thread, coordinator):
        generation = coordinator.start(OWNER, sample_thread.id, "first")

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "second"},
            headers=owner_headers,
        )

        assert response.status_code == 409
        generation.close()

    def test_generate_conflict_while_streaming(
        self, api_client, owner_headers, sample_thread, coordinator
    ):
        generation = coordinator.start(OWNER, sample_thread.id, "first")
        assert next(iter(generation)) == "Hello"

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "second"},
            headers=owner_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        generation.close()

    def test_resend_right_after_stop(
        self, api_client, owner_headers, sample_thread, coordinator
    ):
        generation = coordinator.start(OWNER, sample_thread.id, "first")
        assert next(iter(generation)) == "Hello"

        stopped = api_client.post(
            f"/threads/{sample_thread.id}/generate/stop", headers=owner_headers
        )
        resent = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "again"},
            headers=owner_headers,
        )

        assert stopped.json() == {"stopped": True}
        assert generation.message.status == MessageStatus.STOPPED
        assert generation.message.content == "Hello"
        assert resent.status_code == 200
        assert [name for name, _ in _events(resent.text)][-1] == "done"

    def test_stop(self, api_client, owner_headers, sample_thread, coordinator):
        generation = coordinator.start(OWNER, sample_thread.id, "Hi")

        response = api_client.post(
            f"/threads/{sample_thread.id}/generate/stop", headers=owner_headers
        )

        assert response.status_code == 200
        assert response.json() == {"stopped": True}
        assert generation.message.status == MessageStatus.STOPPED

        again = api_client.post(
            f"/threads/{sample_thread.id}/generate/stop", headers=owner_headers
        )
        assert again.json() == {"stopped": False}

    def test_invalid_generation_options(self, api_client, owner_headers, sample_thread):
        response = api_client.post(
            f"/threads/{sample_thread.id}/generate",
            json={"content": "Hi", "temperature": 5},
            headers=owner_headers,
        )

        assert response.status_code == 422


class TestHealth:
    """Tests for the health check."""

    def test_health_ok(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "connected"}

    def test_health_database_down(self):
        broken = MagicMock()
        broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        def override_get_db():
            yield broken

        app.dependency_overrides[get_db] = override_get_db
        try:
            response = TestClient(app).get("/health")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json() == {"status": "error", "database": "disconnected"}


def test_openapi_documents_response_models(api_client):
    schema = api_client.get("/openapi.json").json()

    assert {"ErrorResponse", "HealthResponse"} <= set(schema["components"]["schemas"])
    list_threads = schema["paths"]["/threads"]["get"]["responses"]
    assert list_threads["404"]["content"]["application/json"]["schema"] == {
        "$ref": "#/components/schemas/ErrorResponse"
    }
    health = schema["paths"]["/health"]["get"]["responses"]
    assert health["200"]["content"]["application/json"]["schema"] == {
        "$ref": "#/components/schemas/HealthResponse"
    }


def test_format_event():
    assert format_event("delta", {"content": "hi"}) == (
        'event: delta\ndata: {"content": "hi"}\n\n'
    )
