"""Tests for the FastAPI endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from fakes import FakeChatLlm, FakeLlm, market_json, research, synthesis_json
from prompter.backend import Backend
from prompter.model_props import DEFAULT_SETTINGS
from server import create_app


def make_client(llm=None, chat_llm=None):
    settings = dict(DEFAULT_SETTINGS, poll_interval_seconds=3600.0)
    backend = Backend(settings=settings, llm=llm or FakeLlm(), chat_llm=chat_llm or FakeChatLlm())
    return TestClient(create_app(backend))


@pytest.fixture
def synthesized():
    """A client whose backend already holds the "Order" artifact."""
    llm = FakeLlm([research(uris=["https://docs.example.com/orders"]), synthesis_json("Order")])
    with make_client(llm, FakeChatLlm([["Add ", "a currency field."]])) as client:
        response = client.post("/synthesize", json={"query": "orders"})
        assert response.status_code == 200
        yield client, llm


class TestSynthesisEndpoints:
    def test_synthesize(self, synthesized):
        client, _ = synthesized
        artifact = client.get("/artifact").json()
        assert artifact["title"] == "Order"
        assert artifact["schema"] == '{"type": "object", "required": ["id", "amount"]}'
        assert artifact["sources"] == [{"title": "Ref 0", "uri": "https://docs.example.com/orders"}]
        assert client.get("/history").json() == ["orders"]

    def test_synthesis_failure_is_502(self):
        with make_client(FakeLlm([RuntimeError("API key not valid")])) as client:
            response = client.post("/synthesize", json={"query": "orders"})
            assert response.status_code == 502
            assert response.json() == {"detail": "API key not valid"}
            assert client.get("/artifact").status_code == 404

    def test_empty_query_is_rejected(self):
        with make_client() as client:
            assert client.post("/synthesize", json={"query": ""}).status_code == 422
            assert client.post("/synthesize", json={"query": "   "}).status_code == 400


class TestAuditEndpoints:
    def test_derive_then_validate(self, synthesized):
        client, llm = synthesized
        llm.responses.extend(['{"title": "DERIVED"}', "All keys present."])

        derived = client.post("/audit/derive", json={})
        assert derived.status_code == 200
        assert derived.json() == {"schema": '{"title": "DERIVED"}'}
        assert client.get("/audit/schema").json() == {"schema": '{"title": "DERIVED"}', "derived": True}

        report = client.post("/audit/validate", json={})
        assert report.json() == {"report": "All keys present."}
        assert "DERIVED" in llm.calls[-1]["content"]

    def test_validate_explicit_payload(self, synthesized):
        client, llm = synthesized
        llm.responses.append("ok")
        client.post("/audit/validate", json={"schema": "S", "example": "E"})
        assert "Schema: S JSON: E" in llm.calls[-1]["content"]

    def test_derive_failure_is_502(self, synthesized):
        client, llm = synthesized
        llm.responses.append(RuntimeError("deadline exceeded"))
        response = client.post("/audit/derive", json={})
        assert response.status_code == 502
        assert response.json()["detail"].startswith("Architectural Fault")

    def test_prompt_test(self, synthesized):
        client, llm = synthesized
        llm.responses.append('{"id": "o_1"}')
        body = client.post("/audit/test").json()
        assert body["output"] == '{"id": "o_1"}'
        assert "Generate a payment intent" in body["harness"]


class TestChatEndpoints:
    def test_streamed_reply(self, synthesized):
        client, _ = synthesized
        assert client.get("/chat").json()["greeting"].startswith('I\'ve analyzed the "Order"')

        response = client.post("/chat", json={"text": "what is missing?"})
        assert response.status_code == 200
        assert response.text == "Add a currency field."

        state = client.get("/chat").json()
        assert state["state"] == "active"
        assert [(t["role"], t["text"]) for t in state["turns"]] == [
            ("user", "what is missing?"),
            ("assistant", "Add a currency field."),
        ]

    def test_blank_message(self):
        with make_client() as client:
            assert client.post("/chat", json={"text": "  "}).status_code == 400

    def test_overlapping_send_is_409(self):
        async def drain(stream):
            return [f async for f in stream]

        with make_client(chat_llm=FakeChatLlm([["first reply"], ["second reply"]])) as client:
            backend = client.app.state.backend
            pending = backend.chat_stream("first")

            response = client.post("/chat", json={"text": "second"})
            assert response.status_code == 409
            assert response.json() == {"detail": "a chat message is already in flight"}

            assert asyncio.run(drain(pending)) == ["first reply"]
            assert client.post("/chat", json={"text": "second"}).text == "second reply"
            turns = client.get("/chat").json()["turns"]
            assert [t["text"] for t in turns] == ["first", "first reply", "second", "second reply"]


class TestFeedEndpoints:
    def test_start_read_stop(self):
        with make_client(FakeLlm([market_json(187.2)])) as client:
            started = client.put("/feeds/main?wait=true", json={"symbol": "aapl"})
            assert started.status_code == 200
            body = started.json()
            assert body["symbol"] == "AAPL"
            assert body["status"] == "ready"
            assert body["snapshot"]["currentPrice"] == 187.2
            assert len(body["snapshot"]["history"]) == 7
            assert body["error"] is None

            assert client.get("/feeds/main").json()["status"] == "ready"
            assert client.delete("/feeds/main").json() == {"status": "stopped", "feed_id": "main"}
            assert client.get("/feeds/main").status_code == 404
            assert client.delete("/feeds/main").status_code == 404

    def test_initial_failure_is_502_with_hint(self):
        with make_client(FakeLlm(["Symbol ZZZ999 not found."])) as client:
            response = client.put("/feeds/main?wait=true", json={"symbol": "ZZZ999"})
            assert response.status_code == 502
            body = response.json()
            assert body["category"] == "malformed"
            assert body["hint"].startswith("The search engine could not structure")

            state = client.get("/feeds/main").json()
            assert state["status"] == "error"
            assert state["error"]["category"] == "malformed"

    def test_blank_symbol(self):
        with make_client() as client:
            assert client.put("/feeds/main", json={"symbol": "   "}).status_code == 400


class TestLibraryEndpoints:
    def test_favorites_flow(self, synthesized):
        client, _ = synthesized
        saved = client.post("/favorites/toggle").json()
        assert saved["saved"] is True
        favorite_id = saved["favorite"]["id"]
        assert [f["artifact"]["title"] for f in client.get("/favorites").json()] == ["Order"]

        assert client.post(f"/favorites/{favorite_id}/open").json()["title"] == "Order"
        assert client.delete(f"/favorites/{favorite_id}").json() == {"status": "removed", "id": favorite_id}
        assert client.get("/favorites").json() == []
        assert client.delete(f"/favorites/{favorite_id}").status_code == 404

    def test_toggle_twice_unsaves(self, synthesized):
        client, _ = synthesized
        client.post("/favorites/toggle")
        assert client.post("/favorites/toggle").json() == {"saved": False}
        assert client.get("/favorites").json() == []

    def test_toggle_without_artifact(self):
        with make_client() as client:
            assert client.post("/favorites/toggle").status_code == 409

    def test_clear_history(self, synthesized):
        client, _ = synthesized
        client.delete("/history")
        assert client.get("/history").json() == []
