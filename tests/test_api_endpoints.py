"""Integration tests for the HTTP endpoints."""
import pytest
import asyncio
import json
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock, patch
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

REPLY = "Admission rate is stored as a percentage in admit_rate."


def _assistant_api():
    api = Mock()
    api.api_key = "sk-test"
    api.retrieve_assistant = AsyncMock(return_value={"id": "asst_1", "name": "Directory Helper"})
    api.create_thread = AsyncMock(return_value={"id": "thread_1"})
    api.create_message = AsyncMock(return_value={"id": "msg_1"})
    api.create_run = AsyncMock(return_value={"id": "run_1", "status": "queued"})
    api.retrieve_run = AsyncMock(return_value={"id": "run_1", "status": "completed"})
    api.list_messages = AsyncMock(return_value=[
        {"role": "assistant", "content": [{"type": "text", "text": {"value": REPLY}}]}
    ])
    api.aclose = AsyncMock()
    return api


def _knowledge(query):
    from models.knowledge import KnowledgeNode, Relationship, RetrievalResult, ScoredNode

    node = KnowledgeNode(
        name="admit_rate",
        label="admit rate field",
        format="percentage",
        type="Variable",
        relationships=(Relationship(type="EXISTS_IN", target="directory"),)
    )
    return RetrievalResult(query=query, nodes=[ScoredNode(node=node, similarity=0.91)])


def _events(response):
    """Decode the ``data:`` lines of a Server-Sent Events body."""
    return [
        json.loads(line[len("data: "):])
        for line in response.text.split("\n")
        if line.startswith("data: ")
    ]


@pytest.fixture
def assistant_api():
    return _assistant_api()


@pytest.fixture
def client(assistant_api):
    """Create a test client with mocked services."""
    # Import after path is set
    from main import app
    import main
    from services.conversation_client import ConversationClient
    from services.turn_orchestrator import TurnOrchestrator

    async def no_sleep(seconds):
        return None

    conversation_client = ConversationClient(
        api=assistant_api, assistant_id="asst_1", max_retries=0, sleep=no_sleep
    )

    async def prepare():
        await conversation_client.initialize()
        await conversation_client.create_conversation()

    asyncio.run(prepare())

    # Mock the startup event to avoid initializing real services
    with patch('main.startup_event'):
        client = TestClient(app)

        # Manually set the global services
        main.conversation_client = conversation_client
        main.retrieval_engine = Mock()
        main.retrieval_engine.query = AsyncMock(side_effect=lambda text, **kwargs: _knowledge(text))
        main.llm_client = Mock()
        main.similarity_index = Mock(size=26)
        main.orchestrator = TurnOrchestrator(conversation_client, main.retrieval_engine)

        yield client


class TestHealth:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["assistant_name"] == "Directory Helper"
        assert data["conversation_id"] == "thread_1"
        assert data["indexed_nodes"] == 26


class TestChatEndpoint:

    def test_chat(self, client):
        import main
        from services.llm_client import LLMResponse

        main.llm_client.generate = AsyncMock(return_value=LLMResponse(
            text="Hello!",
            tokens_input=5,
            tokens_output=2,
            latency_ms=100,
            model_used="llama-3.1-8b-instant"
        ))

        response = client.post("/chat", json={"message": "Hi"})

        assert response.status_code == 200
        assert response.json() == {"message": "Hello!"}
        main.llm_client.generate.assert_awaited_once_with(prompt="Hi")

    def test_chat_empty_message(self, client):
        response = client.post("/chat", json={"message": "  "})

        assert response.status_code == 400

    def test_chat_missing_message(self, client):
        response = client.post("/chat", json={})

        assert response.status_code == 422

    def test_chat_provider_failure(self, client):
        import main
        from services.llm_client import LLMClientError, LLMError

        main.llm_client.generate = AsyncMock(side_effect=LLMClientError(
            LLMError(code="RATE_LIMIT_ERROR", message="Rate limit exceeded", details={})
        ))

        response = client.post("/chat", json={"message": "Hi"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"]["code"] == "RATE_LIMIT_ERROR"


class TestKnowledgeEndpoint:

    def test_knowledge(self, client):
        import main

        response = client.post("/knowledge", json={"query": "admission rate"})

        assert response.status_code == 200
        data = response.json()
        assert data["query"] == "admission rate"
        assert data["nodes"][0]["name"] == "admit_rate"
        assert data["nodes"][0]["format"] == "percentage"
        assert data["nodes"][0]["relationships"] == [{"type": "EXISTS_IN", "target": "directory"}]
        assert data["synthesis"] is None
        main.retrieval_engine.query.assert_awaited_once_with("admission rate", synthesize=False)

    def test_knowledge_empty_query(self, client):
        response = client.post("/knowledge", json={"query": ""})

        assert response.status_code == 400

    def test_knowledge_provider_failure(self, client):
        import main
        from services.errors import EmbeddingError

        main.retrieval_engine.query.side_effect = EmbeddingError("Rate limit exceeded")

        response = client.post("/knowledge", json={"query": "admission rate"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"]["code"] == "EMBEDDING_ERROR"


class TestTurnEndpoints:

    def test_stream_turn(self, client):
        response = client.post("/turns/stream", json={"question": "What is the admission rate?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response)
        fragments = [e["content"] for e in events if e["type"] == "fragment"]
        assert "".join(fragments)[:-1] == REPLY

        metadata = events[-1]
        assert metadata["type"] == "metadata"
        assert metadata["data"]["conversation_id"] == "thread_1"
        turn = metadata["data"]["turn"]
        assert turn["status"] == "delivered"
        assert turn["role"] == "assistant"
        assert turn["knowledge"]["nodes"][0]["name"] == "admit_rate"

    def test_stream_turn_empty_question(self, client):
        response = client.post("/turns/stream", json={"question": " "})

        assert response.status_code == 400

    def test_stream_turn_failure_event(self, client, assistant_api):
        from services.errors import ProviderError

        assistant_api.create_message.side_effect = ProviderError("bad key", status_code=401)

        events = _events(client.post("/turns/stream", json={"question": "hello"}))

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["error"]["code"] == "AUTHENTICATION_ERROR"
        assert events[0]["turn_id"].startswith("turn_")

    def test_stream_turn_while_in_flight(self, client):
        import main

        main.orchestrator = Mock(in_flight=True)

        response = client.post("/turns/stream", json={"question": "hello"})

        assert response.status_code == 409
        assert response.json()["detail"]["error"]["code"] == "TURN_IN_FLIGHT"

    def test_regenerate(self, client, assistant_api):
        from services.errors import ProviderError

        assistant_api.create_message.side_effect = ProviderError("bad request", status_code=400)
        failed_id = _events(client.post("/turns/stream", json={"question": "hello"}))[0]["turn_id"]
        assistant_api.create_message.side_effect = None

        events = _events(client.post(f"/turns/{failed_id}/regenerate"))

        assert events[-1]["type"] == "metadata"
        assert events[-1]["data"]["turn"]["status"] == "delivered"

        turns = client.get("/conversation").json()["turns"]
        assert [t["role"] for t in turns] == ["user", "assistant"]
        assert failed_id not in [t["turn_id"] for t in turns]

    def test_regenerate_unknown_turn(self, client):
        response = client.post("/turns/turn_missing/regenerate")

        assert response.status_code == 400

    def test_cancel_without_turn(self, client):
        response = client.post("/turns/cancel")

        assert response.json() == {"cancelled": False}

    def test_conversation(self, client):
        client.post("/turns/stream", json={"question": "What is the admission rate?"})

        data = client.get("/conversation").json()

        assert data["conversation_id"] == "thread_1"
        user_turn, assistant_turn = data["turns"]
        assert user_turn["content"] == "What is the admission rate?"
        assert user_turn["status"] == "delivered"
        assert assistant_turn["content"][:-1] == REPLY
        assert assistant_turn["knowledge"]["query"] == "What is the admission rate?"
