"""
Native Messages API Pass-through Handler

Relays requests to the real Messages API untouched (apart from the resolved
model id) and relays its responses byte for byte. Used for direct vendor
model ids and for monitor mode.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

import httpx

from messages_relay.common.errors import BackendTransportError
from messages_relay.common.http_client import HttpClient
from messages_relay.protocol import anthropic
from messages_relay.protocol.types import MessagesRequest
from messages_relay.providers.base import BackendHandler

if TYPE_CHECKING:
    from messages_relay.config import Settings

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"
COUNT_TOKENS_PATH = "/v1/messages/count_tokens"


def _decode_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return raw.decode("utf-8", errors="replace")


class NativeHandler(BackendHandler):
    """
    Native Messages API Handler

    The configured API key wins; otherwise the caller's own credential
    headers are forwarded. Upstream error statuses are carried through.
    """

    name = "native"

    def __init__(self, settings: "Settings", http: HttpClient, monitor: bool = False):
        self.settings = settings
        self.http = http
        self.monitor = monitor

    def _url(self, path: str) -> str:
        return f"{self.settings.ANTHROPIC_BASE_URL.rstrip('/')}{path}"

    def _headers(self, forwarded: Optional[dict[str, str]]) -> dict[str, str]:
        forwarded = {k.lower(): v for k, v in (forwarded or {}).items()}
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": forwarded.get("anthropic-version") or self.settings.ANTHROPIC_VERSION,
        }
        if forwarded.get("anthropic-beta"):
            headers["anthropic-beta"] = forwarded["anthropic-beta"]
        if self.settings.ANTHROPIC_API_KEY:
            headers["x-api-key"] = self.settings.ANTHROPIC_API_KEY
        elif forwarded.get("x-api-key"):
            headers["x-api-key"] = forwarded["x-api-key"]
        elif forwarded.get("authorization"):
            headers["Authorization"] = forwarded["authorization"]
        return headers

    def _body(self, request: MessagesRequest, model_id: str) -> dict[str, Any]:
        body = dict(request.body)
        body["model"] = model_id
        return body

    def _log_traffic(self, request: MessagesRequest, model_id: str) -> None:
        if self.monitor:
            logger.info(
                "Monitor: model=%s stream=%s messages=%d tools=%d",
                model_id, request.stream, len(request.body.get("messages", [])), len(request.tools),
            )
        else:
            logger.info("Native request: requested=%s target=%s", request.model, model_id)

    @staticmethod
    def _upstream_error(status_code: int, raw: bytes) -> BackendTransportError:
        body = _decode_body(raw)
        message = f"Upstream returned HTTP {status_code}"
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message") or message
        return BackendTransportError(
            message=message,
            code="upstream_error",
            details={"upstream_status": status_code, "upstream_body": body},
            status_code=status_code,
        )

    async def stream_response(self, request: MessagesRequest, model_id: str) -> AsyncIterator[bytes]:
        self._log_traffic(request, model_id)
        relayed = False
        try:
            async with self.http.stream(
                "POST",
                self._url(MESSAGES_PATH),
                headers=self._headers(request.headers),
                json=self._body(request, model_id),
            ) as response:
                if response.status_code >= 400:
                    raise self._upstream_error(response.status_code, await response.aread())
                async for chunk in response.aiter_raw():
                    if chunk:
                        relayed = True
                        yield chunk
        except httpx.HTTPError as e:
            if not relayed:
                raise BackendTransportError(
                    message=f"Native request failed: {e}",
                    code="backend_unreachable",
                ) from e
            logger.error("Native stream failed mid-response: %s", e)
            yield anthropic.error_frame(str(e))

    async def complete(self, request: MessagesRequest, model_id: str) -> dict[str, Any]:
        self._log_traffic(request, model_id)
        try:
            response = await self.http.post(
                self._url(MESSAGES_PATH),
                headers=self._headers(request.headers),
                json=self._body(request, model_id),
            )
        except httpx.HTTPError as e:
            raise BackendTransportError(
                message=f"Native request failed: {e}",
                code="backend_unreachable",
            ) from e
        if response.status_code >= 400:
            raise self._upstream_error(response.status_code, response.content)
        return response.json()

    async def count_tokens(self, body: dict[str, Any], headers: Optional[dict[str, str]] = None) -> dict[str, Any]:
        """Forward to the true token-counting endpoint."""
        try:
            response = await self.http.post(
                self._url(COUNT_TOKENS_PATH),
                headers=self._headers(headers),
                json=body,
            )
        except httpx.HTTPError as e:
            raise BackendTransportError(
                message=f"Token count request failed: {e}",
                code="backend_unreachable",
            ) from e
        if response.status_code >= 400:
            raise self._upstream_error(response.status_code, response.content)
        return response.json()
