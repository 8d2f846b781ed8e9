"""HTTP transport for an OpenAI-compatible Assistants API."""
import logging
from typing import Any, Dict, List, Optional
import httpx
from config import OPENAI_API_KEY, ASSISTANT_API_BASE_URL
from services.errors import ProviderError

logger = logging.getLogger(__name__)


class AssistantAPI:
    """Thin async wrapper over the assistants, threads, messages and runs endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = OPENAI_API_KEY,
        base_url: str = ASSISTANT_API_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            api_key: Provider API key
            base_url: API root, e.g. https://api.openai.com/v1
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "OpenAI-Beta": "assistants=v2"
            }
        )

    async def retrieve_assistant(self, assistant_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/assistants/{assistant_id}")

    async def create_thread(self) -> Dict[str, Any]:
        return await self._request("POST", "/threads", json={})

    async def create_message(self, thread_id: str, content: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": "user", "content": content}
        )

    async def create_run(self, thread_id: str, assistant_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json={"assistant_id": assistant_id}
        )

    async def retrieve_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")

    async def list_messages(self, thread_id: str, limit: int = 1, order: str = "desc") -> List[Dict[str, Any]]:
        body = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params={"limit": limit, "order": order}
        )
        return body.get("data", [])

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one request and decode the JSON body.

        Raises:
            ProviderError: On timeouts, network failures and non-2xx responses
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out after {self.timeout}s")
            raise ProviderError(
                f"Request timed out after {self.timeout}s",
                code="TIMEOUT_ERROR",
                details={"path": path, "original_error": str(e)}
            )
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ProviderError(
                f"Network error: {str(e)}",
                code="NETWORK_ERROR",
                details={"path": path, "original_error": str(e)}
            )

        if response.status_code >= 400:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise ProviderError(
                f"Assistant API request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                details={"path": path, "status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Assistant API returned invalid JSON: {e}",
                details={"path": path}
            )
