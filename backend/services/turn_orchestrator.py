"""Run the assistant stream and knowledge retrieval for one user turn."""
import asyncio
import logging
from typing import AsyncIterator, Optional

from models.conversation import Conversation, Role, Turn, TurnStatus
from models.knowledge import RetrievalResult
from services.conversation_client import ConversationClient
from services.errors import ChatbotError, DataLoadError, TurnCancelledError, TurnInFlightError
from services.retrieval_engine import RetrievalEngine

logger = logging.getLogger(__name__)

FAILED_TURN_MESSAGE = "Failed to generate response"


class TurnStream:
    """
    Single-use async iterable over the fragments of one assistant turn.

    ``turn`` is the assistant Turn being filled in; once iteration ends it
    is either delivered (with knowledge attached when retrieval succeeded)
    or failed.
    """

    def __init__(self, orchestrator: "TurnOrchestrator", text: str, cancel_token: asyncio.Event):
        self._orchestrator = orchestrator
        self.text = text
        self.cancel_token = cancel_token
        self.turn: Optional[Turn] = None
        self._started = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("TurnStream can only be consumed once")
        self._started = True
        return self._orchestrator._run(self)

    async def collect(self) -> Turn:
        """Consume the whole stream and return the finished assistant turn."""
        async for _ in self:
            pass
        return self.turn


class TurnOrchestrator:
    """Fork the conversational stream and the retrieval lookup, then merge them."""

    def __init__(self, client: ConversationClient, retrieval_engine: RetrievalEngine):
        self.client = client
        self.retrieval_engine = retrieval_engine
        self._active_token: Optional[asyncio.Event] = None

    @property
    def conversation(self) -> Optional[Conversation]:
        return self.client.conversation

    @property
    def in_flight(self) -> bool:
        return self._active_token is not None

    def cancel(self) -> bool:
        """Signal the in-flight turn to stop. Returns False if nothing is running."""
        if self._active_token is None:
            return False
        self._active_token.set()
        return True

    def handle(self, text: str, cancel_token: Optional[asyncio.Event] = None) -> TurnStream:
        """
        Prepare a turn for ``text``; the work starts when the stream is iterated.

        Raises:
            TurnInFlightError: If another turn is still streaming
        """
        if self.in_flight:
            raise TurnInFlightError("Another turn is still in progress")
        return TurnStream(self, text, cancel_token or asyncio.Event())

    def regenerate(self, turn_id: str, cancel_token: Optional[asyncio.Event] = None) -> TurnStream:
        """
        Discard a failed assistant turn and resubmit the user text behind it.

        The failed turn, every turn after it and the user turn that produced
        it are dropped; the user text is then sent again as a new turn.

        Raises:
            ValueError: If the turn is unknown, not a failed assistant turn,
                or has no user turn before it
        """
        conversation = self.conversation
        if conversation is None:
            raise ValueError("No conversation to regenerate from")
        try:
            index = conversation.index_of(turn_id)
        except KeyError:
            raise ValueError(f"Unknown turn: {turn_id}")

        failed = conversation.turns[index]
        if failed.role is not Role.ASSISTANT or failed.status is not TurnStatus.FAILED:
            raise ValueError(f"Turn {turn_id} is not a failed assistant turn")
        user_turn = conversation.turns[index - 1] if index > 0 else None
        if user_turn is None or user_turn.role is not Role.USER:
            raise ValueError(f"Turn {turn_id} has no user turn to resubmit")

        stream = self.handle(user_turn.content, cancel_token)
        dropped = conversation.truncate(index - 1)
        logger.info(f"Regenerating turn {turn_id}, discarded {len(dropped)} turns")
        return stream

    async def _run(self, stream: TurnStream) -> AsyncIterator[str]:
        if self.in_flight:
            raise TurnInFlightError("Another turn is still in progress")
        self._active_token = stream.cancel_token

        retrieval_task: Optional[asyncio.Task] = None
        turn: Optional[Turn] = None
        completed = False
        try:
            fragments = self.client.send_turn(stream.text, stream.cancel_token)
            turn = self.conversation.add_turn(Role.ASSISTANT)
            stream.turn = turn
            retrieval_task = asyncio.create_task(self.retrieval_engine.query(stream.text))

            try:
                async for fragment in fragments:
                    turn.append(fragment)
                    yield fragment
            except TurnCancelledError:
                logger.info(f"Turn {turn.turn_id} cancelled by caller")
                raise
            except ChatbotError as e:
                turn.mark_failed(FAILED_TURN_MESSAGE)
                logger.error(f"Turn {turn.turn_id} failed: {e.message}", extra={"error_code": e.code})
                raise

            try:
                knowledge = await self._await_knowledge(retrieval_task)
            except DataLoadError as e:
                turn.mark_failed(FAILED_TURN_MESSAGE)
                logger.error(
                    f"Turn {turn.turn_id} failed: knowledge index is unusable: {e.message}",
                    extra={"error_code": e.code}
                )
                raise
            turn.mark_delivered(knowledge)
            completed = True
            logger.info(
                f"Turn {turn.turn_id} delivered",
                extra={"nodes": len(knowledge.nodes) if knowledge else 0}
            )
        finally:
            if not completed:
                if retrieval_task is not None:
                    _discard(retrieval_task)
                # cancelled or abandoned turns leave no trace in the conversation
                if turn is not None and not turn.is_final:
                    self.conversation.remove_turn(turn)
            self._active_token = None

    @staticmethod
    async def _await_knowledge(task: asyncio.Task) -> Optional[RetrievalResult]:
        try:
            return await task
        except DataLoadError:
            # a missing or mismatched index fails every query until it is rebuilt
            raise
        except ChatbotError as e:
            logger.warning(f"Knowledge retrieval failed, delivering turn without it: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected knowledge retrieval error: {e}", exc_info=True)
        return None


def _discard(task: asyncio.Task) -> None:
    if task.done():
        if not task.cancelled():
            task.exception()  # mark retrieved so asyncio does not warn
    else:
        task.cancel()
