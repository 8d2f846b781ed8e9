"""Client that drives remote assistant runs and streams their replies."""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, List, Optional

from config import (
    OPENAI_ASSISTANT_ID,
    POLL_INTERVAL_SECONDS,
    RUN_TIMEOUT_SECONDS,
    MAX_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    CHUNK_SIZE_WORDS,
    CHUNK_DELAY_SECONDS,
)
from models.conversation import Conversation, Role, Turn, TurnStatus
from services.assistant_api import AssistantAPI
from services.errors import (
    ChatbotError,
    ConversationCreateError,
    InitializationError,
    ProtocolError,
    ProviderError,
    RetryExhaustedError,
    RunError,
    RunTimeoutError,
    TurnCancelledError,
)

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Lifecycle of a single assistant run."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REQUIRES_ACTION = "requires_action"
    INCOMPLETE = "incomplete"

    @property
    def is_terminal(self) -> bool:
        return not _LEGAL_TRANSITIONS[self]


_FAILURES: FrozenSet[RunStatus] = frozenset({
    RunStatus.FAILED,
    RunStatus.CANCELLED,
    RunStatus.EXPIRED,
    RunStatus.REQUIRES_ACTION,
    RunStatus.INCOMPLETE,
})
_TERMINAL: FrozenSet[RunStatus] = _FAILURES | {RunStatus.COMPLETED}

_LEGAL_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.QUEUED: frozenset({RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.CANCELLING}) | _TERMINAL,
    RunStatus.IN_PROGRESS: frozenset({RunStatus.IN_PROGRESS, RunStatus.CANCELLING}) | _TERMINAL,
    RunStatus.CANCELLING: frozenset({
        RunStatus.CANCELLING,
        RunStatus.CANCELLED,
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.EXPIRED,
    }),
}
_LEGAL_TRANSITIONS.update({status: frozenset() for status in _TERMINAL})

_FAILURE_REASONS: Dict[RunStatus, str] = {
    RunStatus.FAILED: "Run failed",
    RunStatus.CANCELLED: "Run was cancelled",
    RunStatus.EXPIRED: "Run expired",
    RunStatus.REQUIRES_ACTION: "Run requires action",
    RunStatus.INCOMPLETE: "Run incomplete",
}


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE_WORDS) -> List[str]:
    """
    Split text into groups of ``chunk_size`` space-separated words.

    Each fragment ends with a single space, so joining all fragments gives
    back ``text`` followed by one space.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    words = text.split(" ")
    return [
        " ".join(words[i:i + chunk_size]) + " "
        for i in range(0, len(words), chunk_size)
    ]


@dataclass
class TurnContext:
    """Per-call state for one ``send_turn`` invocation."""
    text: str
    turn: Turn
    cancel_token: Optional[asyncio.Event] = None
    attempt: int = 0
    run_deadline: Optional[float] = None

    def check_cancelled(self) -> None:
        if self.cancel_token is not None and self.cancel_token.is_set():
            raise TurnCancelledError()

    def start_run_clock(self, now: float, timeout: float) -> None:
        """Arm the deadline for the run created at ``now``."""
        self.run_deadline = now + timeout

    def past_deadline(self, now: float) -> bool:
        return self.run_deadline is not None and now > self.run_deadline


class ConversationClient:
    """
    Manages one conversation thread on the assistant provider.

    Each turn appends the user's message, starts a run, polls it to a
    terminal state and replays the assistant's reply as paced fragments.
    Transient failures are retried with exponential backoff; cancellation
    is cooperative and is checked once per poll iteration.
    """

    def __init__(
        self,
        api: Optional[AssistantAPI] = None,
        assistant_id: Optional[str] = OPENAI_ASSISTANT_ID,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        run_timeout: float = RUN_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        chunk_size: int = CHUNK_SIZE_WORDS,
        chunk_delay: float = CHUNK_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.api = api or AssistantAPI()
        self.assistant_id = assistant_id
        self.poll_interval = poll_interval
        self.run_timeout = run_timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self._sleep = sleep
        self._clock = clock

        self.assistant_name: Optional[str] = None
        self._initialized = False
        self._conversation: Optional[Conversation] = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def conversation(self) -> Optional[Conversation]:
        return self._conversation

    async def initialize(self) -> Dict[str, Any]:
        """
        Retrieve the assistant's metadata.

        Raises:
            InitializationError: If credentials are missing or the provider fails
        """
        if not self.api.api_key or not self.assistant_id:
            raise InitializationError("Missing assistant configuration (API key or assistant id)")

        try:
            assistant = await self.api.retrieve_assistant(self.assistant_id)
        except ProviderError as e:
            logger.error(f"Error retrieving assistant {self.assistant_id}: {e.message}")
            raise InitializationError(
                "Failed to initialize assistant",
                details={"assistant_id": self.assistant_id, "cause": e.to_dict()}
            ) from e

        self.assistant_name = assistant.get("name") or "AI Assistant"
        self._initialized = True
        logger.info(f"Initialized assistant '{self.assistant_name}' ({self.assistant_id})")
        return assistant

    async def create_conversation(self) -> Conversation:
        """
        Open the client's single conversation thread.

        Raises:
            ConversationCreateError: If the client is not initialized, a
                conversation already exists, or the provider fails
        """
        if not self._initialized:
            raise ConversationCreateError("Client must be initialized before creating a conversation")
        if self._conversation is not None:
            raise ConversationCreateError(
                "Conversation already exists",
                details={"conversation_id": self._conversation.conversation_id}
            )

        try:
            thread = await self.api.create_thread()
        except ProviderError as e:
            logger.error(f"Error creating conversation thread: {e.message}")
            raise ConversationCreateError(
                "Failed to create chat thread", details={"cause": e.to_dict()}
            ) from e

        thread_id = thread.get("id")
        if not thread_id:
            raise ConversationCreateError("Thread response did not include an id")

        self._conversation = Conversation(conversation_id=thread_id)
        logger.info(f"Created conversation: {thread_id}")
        return self._conversation

    def send_turn(self, text: str, cancel_token: Optional[asyncio.Event] = None) -> AsyncIterator[str]:
        """
        Record a user turn and return the stream of reply fragments.

        The returned iterator does the remote work when it is consumed and
        cannot be restarted; call ``send_turn`` again to replay.

        Args:
            text: User message
            cancel_token: Event the caller sets to abort the turn

        Raises:
            ValueError: If text is empty
            ConversationCreateError: If no conversation has been created
        """
        if not text or not text.strip():
            raise ValueError("Turn text cannot be empty")
        if self._conversation is None:
            raise ConversationCreateError("Conversation has not been created")

        turn = self._conversation.add_turn(Role.USER, text)
        ctx = TurnContext(text=text, turn=turn, cancel_token=cancel_token)
        return self._stream(ctx)

    async def _stream(self, ctx: TurnContext) -> AsyncIterator[str]:
        try:
            reply = await self._complete_with_retry(ctx)
        except TurnCancelledError:
            # a message that never reached the thread is dropped, not failed
            if not ctx.turn.is_final:
                self._conversation.remove_turn(ctx.turn)
            raise
        except ChatbotError:
            if not ctx.turn.is_final:
                ctx.turn.mark_failed()
            raise

        for fragment in chunk_text(reply, self.chunk_size):
            await self._sleep(self.chunk_delay)
            ctx.check_cancelled()
            yield fragment

    async def _complete_with_retry(self, ctx: TurnContext) -> str:
        while True:
            ctx.check_cancelled()
            try:
                return await self._attempt(ctx)
            except TurnCancelledError:
                logger.info(f"Turn {ctx.turn.turn_id} cancelled on attempt {ctx.attempt + 1}")
                raise
            except ChatbotError as e:
                if not e.retryable:
                    logger.error(f"Turn {ctx.turn.turn_id} failed permanently: {e.message}")
                    raise
                if ctx.attempt >= self.max_retries:
                    logger.error(
                        f"Turn {ctx.turn.turn_id} failed after {ctx.attempt + 1} attempts: {e.message}"
                    )
                    raise RetryExhaustedError(e, attempts=ctx.attempt + 1) from e

                delay = self.base_delay * (2 ** ctx.attempt)
                logger.warning(
                    f"Turn attempt {ctx.attempt + 1} failed ({e.code}): {e.message}. "
                    f"Retrying in {delay}s",
                    extra={"attempt": ctx.attempt + 1, "delay_s": delay, "error_code": e.code}
                )
                ctx.check_cancelled()
                await self._sleep(delay)
                ctx.attempt += 1

    async def _attempt(self, ctx: TurnContext) -> str:
        thread_id = self._conversation.conversation_id

        await self.api.create_message(thread_id, ctx.text)
        if ctx.turn.status is TurnStatus.PENDING:
            ctx.turn.mark_delivered()

        ctx.check_cancelled()
        run = await self.api.create_run(thread_id, self.assistant_id)
        run_id = run.get("id")
        if not run_id:
            raise ProtocolError("Run response did not include an id")

        await self._wait_for_run(ctx, thread_id, run_id)
        return await self._latest_reply(thread_id)

    async def _wait_for_run(self, ctx: TurnContext, thread_id: str, run_id: str) -> None:
        started = self._clock()
        ctx.start_run_clock(started, self.run_timeout)
        status = RunStatus.QUEUED

        while True:
            ctx.check_cancelled()

            now = self._clock()
            if ctx.past_deadline(now):
                raise RunTimeoutError(
                    "Request timed out",
                    details={"run_id": run_id, "elapsed_s": now - started}
                )

            payload = await self.api.retrieve_run(thread_id, run_id)
            observed = self._parse_status(payload)
            if observed not in _LEGAL_TRANSITIONS[status]:
                raise ProtocolError(
                    f"Illegal run transition {status.value} -> {observed.value}",
                    details={"run_id": run_id}
                )
            status = observed
            logger.debug(f"Run {run_id} status: {status.value}")

            if status is RunStatus.COMPLETED:
                return
            if status.is_terminal:
                reason = _FAILURE_REASONS[status]
                if status is RunStatus.FAILED:
                    reason = (payload.get("last_error") or {}).get("message") or reason
                raise RunError(status.value, reason, details={"run_id": run_id})

            await self._sleep(self.poll_interval)

    @staticmethod
    def _parse_status(payload: Dict[str, Any]) -> RunStatus:
        raw = payload.get("status")
        try:
            return RunStatus(raw)
        except ValueError:
            raise ProtocolError(f"Unknown run status: {raw!r}")

    async def _latest_reply(self, thread_id: str) -> str:
        messages = await self.api.list_messages(thread_id, limit=1, order="desc")

        last_message = messages[0] if messages else None
        if not last_message or last_message.get("role") != Role.ASSISTANT.value:
            raise ProtocolError("No assistant response found")

        content = last_message.get("content") or []
        if not content or content[0].get("type") != "text":
            raise ProtocolError("Unexpected message content type")

        value = (content[0].get("text") or {}).get("value")
        if value is None:
            raise ProtocolError("Assistant message has no text value")
        return value

    async def aclose(self) -> None:
        await self.api.aclose()
