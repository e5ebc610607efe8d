"""
Action executor interface and the HTTP client for the remote browser
automation service.

The pipeline never drives a browser itself. It opens an execution
context with `executor.session()` (an async context manager that always
releases the remote browser), calls connect() or send_message(), and
gets an ActionResult back.
"""

import base64
import binascii
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import httpx

from linkme.features.outreach.domain.models import ActionResult, Screenshot
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30  # seconds, per HTTP call; whole actions are bounded by the consumer


class ActionExecutorError(Exception):
    """Executor could not run the action (transport, remote error, bad response)."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class ExecutionContext(Protocol):
    async def connect(
        self, record_id: str, display_name: str, custom_message: str | None = None
    ) -> ActionResult: ...

    async def send_message(
        self, record_id: str, display_name: str, message: str
    ) -> ActionResult: ...


class ActionExecutor(Protocol):
    def session(self) -> AbstractAsyncContextManager[ExecutionContext]: ...


def _parse_result(payload: dict) -> ActionResult:
    screenshots = []
    for shot in payload.get("screenshots") or []:
        try:
            data = base64.b64decode(shot.get("image_base64", ""), validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Executor returned undecodable screenshot", label=shot.get("label"))
            continue
        screenshots.append(Screenshot(label=str(shot.get("label", "screenshot")), data=data))

    return ActionResult(
        success=bool(payload.get("success", False)),
        message=str(payload.get("message", "")),
        logs=[str(line) for line in payload.get("logs") or []],
        screenshots=screenshots,
    )


class HttpExecutionContext:
    """One remote browser session."""

    def __init__(self, client: httpx.AsyncClient, session_id: str):
        self.client = client
        self.session_id = session_id

    async def _post_action(self, action: str, body: dict) -> ActionResult:
        try:
            response = await self.client.post(f"/sessions/{self.session_id}/{action}", json=body)
        except httpx.RequestError as e:
            raise ActionExecutorError(f"{action} request failed: {e}") from e

        if response.status_code >= 400:
            raise ActionExecutorError(
                f"{action} rejected by executor: HTTP {response.status_code}",
                status_code=response.status_code,
                recoverable=response.status_code >= 500,
            )

        try:
            return _parse_result(response.json())
        except ValueError as e:
            raise ActionExecutorError(f"{action} returned invalid JSON: {e}") from e

    async def connect(
        self, record_id: str, display_name: str, custom_message: str | None = None
    ) -> ActionResult:
        return await self._post_action(
            "connect",
            {"record_id": record_id, "display_name": display_name, "message": custom_message},
        )

    async def send_message(self, record_id: str, display_name: str, message: str) -> ActionResult:
        return await self._post_action(
            "message",
            {"record_id": record_id, "display_name": display_name, "message": message},
        )


class HttpActionExecutor:
    """Client for the browser automation service at EXECUTOR_BASE_URL."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @asynccontextmanager
    async def session(self) -> AsyncIterator[HttpExecutionContext]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post("/sessions")
                response.raise_for_status()
                session_id = response.json()["session_id"]
            except (httpx.HTTPError, KeyError, ValueError) as e:
                raise ActionExecutorError(f"Failed to open executor session: {e}") from e

            logger.debug("Executor session opened", executor_session_id=session_id)
            try:
                yield HttpExecutionContext(client, session_id)
            finally:
                try:
                    await client.delete(f"/sessions/{session_id}")
                    logger.debug("Executor session released", executor_session_id=session_id)
                except httpx.HTTPError as e:
                    logger.warning(
                        "Failed to release executor session",
                        executor_session_id=session_id,
                        error=str(e),
                    )
