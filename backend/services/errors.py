"""Error taxonomy shared by the conversation and retrieval services."""
from typing import Any, Dict, Optional


class ChatbotError(Exception):
    """Base error carrying a structured code, message and details."""

    code = "CHATBOT_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None
    ):
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class InitializationError(ChatbotError):
    """Assistant metadata could not be retrieved."""
    code = "INITIALIZATION_ERROR"


class ConversationCreateError(ChatbotError):
    """The remote conversation thread could not be opened."""
    code = "CONVERSATION_CREATE_ERROR"


class DataLoadError(ChatbotError):
    """Node embeddings or node names are missing or inconsistent."""
    code = "DATA_LOAD_ERROR"


class DimensionMismatchError(DataLoadError):
    """Vectors of different dimensions were mixed."""
    code = "DIMENSION_MISMATCH"


class EmbeddingError(ChatbotError):
    """The embedding provider failed to embed a text."""
    code = "EMBEDDING_ERROR"


class ProviderError(ChatbotError):
    """A call to the conversation provider failed."""

    code = "API_ERROR"
    retryable = True

    _CODES_BY_STATUS = {
        401: "AUTHENTICATION_ERROR",
        403: "AUTHENTICATION_ERROR",
        404: "NOT_FOUND_ERROR",
        429: "RATE_LIMIT_ERROR",
    }
    _PERMANENT_STATUSES = (400, 401, 403, 404)

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        if code:
            self.code = code
        elif status_code in self._CODES_BY_STATUS:
            self.code = self._CODES_BY_STATUS[status_code]
        super().__init__(
            message,
            details=details,
            retryable=status_code not in self._PERMANENT_STATUSES
        )


class RunError(ChatbotError):
    """A run reached a terminal state other than completed."""

    code = "RUN_ERROR"
    retryable = True

    def __init__(self, status: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.status = status
        self.reason = reason
        details = dict(details or {})
        details.setdefault("status", status)
        # requires_action never resolves without tool outputs, so retrying is pointless
        super().__init__(reason, details=details, retryable=status != "requires_action")


class RunTimeoutError(ChatbotError):
    """A run did not finish before the deadline."""
    code = "TIMEOUT_ERROR"
    retryable = True


class TurnCancelledError(ChatbotError):
    """The caller cancelled the turn."""

    code = "CANCELLED"

    def __init__(self, message: str = "Request cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, retryable=False)


class ProtocolError(ChatbotError):
    """The provider answered with something the client cannot interpret."""
    code = "PROTOCOL_ERROR"
    retryable = True


class RetryExhaustedError(ChatbotError):
    """A turn kept failing after every retry was spent."""

    code = "RETRY_EXHAUSTED"

    def __init__(self, last_error: ChatbotError, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Giving up after {attempts} attempts: {last_error.message}",
            details={"attempts": attempts, "last_error": last_error.to_dict()}
        )


class TurnInFlightError(ChatbotError):
    """A second turn was started while another is still streaming."""
    code = "TURN_IN_FLIGHT"
