"""Main entry point for the knowledge-augmented assistant API."""
import json
import logging
from typing import Any, AsyncIterator, Dict
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import (
    PORT,
    LOG_LEVEL,
    LOG_FORMAT,
    CORS_ORIGINS,
    NODE_EMBEDDINGS_PATH,
    NODE_NAMES_PATH,
)
from logger import setup_logging
from models.api import (
    ChatRequest,
    ChatResponse,
    TurnRequest,
    KnowledgeRequest,
    KnowledgeResponse,
    TurnModel,
    ConversationResponse,
)
from models.conversation import Turn
from services.assistant_api import AssistantAPI
from services.conversation_client import ConversationClient
from services.embedding_model import EmbeddingModel
from services.errors import ChatbotError, TurnInFlightError
from services.llm_client import LLMClient, LLMClientError
from services.retrieval_engine import RetrievalEngine
from services.similarity_index import SimilarityIndex
from services.turn_orchestrator import TurnStream, TurnOrchestrator

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Knowledge Graph Assistant",
    description="Assistant turns annotated with knowledge graph retrieval",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
conversation_client: ConversationClient = None
retrieval_engine: RetrievalEngine = None
llm_client: LLMClient = None
orchestrator: TurnOrchestrator = None
similarity_index: SimilarityIndex = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global conversation_client, retrieval_engine, llm_client, orchestrator, similarity_index

    logger.info("Initializing assistant services...")

    try:
        similarity_index = SimilarityIndex()
        similarity_index.load_from_files(NODE_EMBEDDINGS_PATH, NODE_NAMES_PATH)

        llm_client = LLMClient()
        embedding_model = EmbeddingModel()
        retrieval_engine = RetrievalEngine(similarity_index, embedding_model, llm_client=llm_client)
        logger.info("Initialized RetrievalEngine")

        conversation_client = ConversationClient(AssistantAPI())
        await conversation_client.initialize()
        await conversation_client.create_conversation()
        logger.info("Initialized ConversationClient")

        orchestrator = TurnOrchestrator(conversation_client, retrieval_engine)
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    if conversation_client is not None:
        await conversation_client.aclose()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Knowledge Graph Assistant API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    conversation = conversation_client.conversation if conversation_client else None
    return {
        "status": "healthy",
        "service": "knowledge-graph-assistant",
        "version": "1.0.0",
        "assistant_name": conversation_client.assistant_name if conversation_client else None,
        "conversation_id": conversation.conversation_id if conversation else None,
        "indexed_nodes": similarity_index.size if similarity_index else 0
    }


@app.post("/chat", response_model=ChatResponse)
async def chat_endpoint(request: ChatRequest) -> ChatResponse:
    """Plain single-turn completion without conversation state."""
    if not request.message or not request.message.strip():
        raise HTTPException(status_code=400, detail="Message field is required and cannot be empty")

    try:
        response = await llm_client.generate(prompt=request.message)
    except LLMClientError as e:
        logger.error(f"LLM client error: {e.error.message}")
        raise HTTPException(status_code=503, detail={"error": e.to_dict()})

    return ChatResponse(message=response.text)


@app.post("/knowledge", response_model=KnowledgeResponse)
async def knowledge_endpoint(request: KnowledgeRequest) -> KnowledgeResponse:
    """Look up the knowledge graph nodes relevant to a query."""
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Query field is required and cannot be empty")

    try:
        result = await retrieval_engine.query(request.query, synthesize=request.synthesize)
    except ChatbotError as e:
        logger.error(f"Knowledge lookup failed: {e.message}")
        raise HTTPException(status_code=503, detail={"error": e.to_dict()})

    return KnowledgeResponse(**result.to_dict())


@app.post("/turns/stream")
async def turn_stream_endpoint(request: TurnRequest):
    """
    Stream an assistant turn as Server-Sent Events.

    Events:
    - data: {type: "fragment", content: "..."} for each paced fragment
    - data: {type: "metadata", data: {turn, conversation_id}} once the turn is delivered
    - data: {type: "error", error: {...}} if the turn fails
    """
    if not request.question or not request.question.strip():
        raise HTTPException(status_code=400, detail="Question field is required and cannot be empty")
    if orchestrator.in_flight:
        raise HTTPException(status_code=409, detail={"error": TurnInFlightError(
            "Another turn is still in progress").to_dict()})

    logger.info(f"Processing turn: {request.question[:100]}...")
    return _sse_response(orchestrator.handle(request.question))


@app.post("/turns/{turn_id}/regenerate")
async def regenerate_endpoint(turn_id: str):
    """Discard a failed assistant turn and stream a fresh answer to the same question."""
    if orchestrator.in_flight:
        raise HTTPException(status_code=409, detail={"error": TurnInFlightError(
            "Another turn is still in progress").to_dict()})
    try:
        stream = orchestrator.regenerate(turn_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _sse_response(stream)


@app.post("/turns/cancel")
async def cancel_endpoint():
    """Cancel the in-flight turn, if any."""
    return {"cancelled": orchestrator.cancel()}


@app.get("/conversation", response_model=ConversationResponse)
async def conversation_endpoint() -> ConversationResponse:
    """Return the conversation's turns."""
    conversation = conversation_client.conversation
    if conversation is None:
        return ConversationResponse(turns=[])
    return ConversationResponse(
        conversation_id=conversation.conversation_id,
        turns=[_turn_model(turn) for turn in conversation.turns]
    )


def _turn_model(turn: Turn) -> TurnModel:
    return TurnModel(
        turn_id=turn.turn_id,
        role=turn.role.value,
        content=turn.content,
        status=turn.status.value,
        timestamp=turn.timestamp.isoformat(),
        knowledge=KnowledgeResponse(**turn.knowledge.to_dict()) if turn.knowledge else None
    )


def _sse(event: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(event)}\n\n".encode("utf-8")


def _sse_response(stream: TurnStream) -> StreamingResponse:
    async def generate_stream() -> AsyncIterator[bytes]:
        try:
            async for fragment in stream:
                yield _sse({"type": "fragment", "content": fragment})

            conversation = conversation_client.conversation
            yield _sse({
                "type": "metadata",
                "data": {
                    "turn": _turn_model(stream.turn).model_dump(),
                    "conversation_id": conversation.conversation_id if conversation else None
                }
            })
        except ChatbotError as e:
            logger.error(f"Turn failed during streaming: {e.message}")
            yield _sse({
                "type": "error",
                "turn_id": stream.turn.turn_id if stream.turn else None,
                "error": e.to_dict()
            })
        except Exception as e:
            logger.error(f"Unexpected error during streaming: {e}", exc_info=True)
            yield _sse({
                "type": "error",
                "error": {
                    "code": "UNKNOWN_ERROR",
                    "message": f"Internal server error: {str(e)}"
                }
            })

    return StreamingResponse(
        generate_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable buffering in nginx
        }
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Knowledge Graph Assistant API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
