"""HTTP transport for the generator's streamed response.

``HttpStreamOpener`` receives an ``httpx.AsyncClient`` via constructor
injection; whoever builds the client owns its lifecycle. It opens one streamed
POST per generation and hands back the open body for ``StreamConsumer``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from patchstream import __version__
from patchstream.errors import ErrorCode, GenerationAbortedError, PatchStreamError
from patchstream.stream import until_cancelled

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator, Mapping

    from patchstream.config import GeneratorSettings
    from patchstream.protocols import TokenProvider

log = structlog.get_logger()


def build_http_client(settings: GeneratorSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(30.0, read=settings.timeout_seconds),
        headers={"User-Agent": f"patchstream/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def build_payload(
    prompt: str,
    customization: Mapping[str, Any] | None = None,
    persistent_options: Mapping[str, Any] | None = None,
    *,
    is_refinement: bool = False,
    previous_html: str | None = None,
) -> dict[str, Any]:
    """Request body understood by the generator endpoint."""
    return {
        "prompt": prompt,
        "customization": dict(customization or {}),
        "persistentOptions": dict(persistent_options or {}),
        "isRefinement": is_refinement,
        "previousHtml": previous_html,
        "stream": True,
    }


def _transport_error(message: str, *, recoverable: bool) -> PatchStreamError:
    return PatchStreamError(
        code=ErrorCode.TRANSPORT_FAILED,
        message=message,
        suggestion="Something went wrong while generating. Try again.",
        recoverable=recoverable,
    )


class HttpByteStream:
    """Open streamed response body; network errors surface as PatchStreamError."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise _transport_error(f"Stream interrupted: {exc}", recoverable=True) from exc

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpStreamOpener:
    """Opens the generator stream with a POST, implementing StreamOpenerProtocol."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._token_provider = token_provider

    async def open(self, payload: dict[str, Any], cancel: asyncio.Event) -> HttpByteStream:
        """Send the request and return the open body.

        Raises PatchStreamError on network errors and non-2xx responses, and
        GenerationAbortedError if ``cancel`` fires before the headers arrive.
        No retries; retry policy belongs to the caller.
        """
        if cancel.is_set():
            raise GenerationAbortedError()

        headers = {"Content-Type": "application/json"}
        if self._token_provider is not None:
            token = await self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        request = self._client.build_request("POST", self._url, json=payload, headers=headers)
        try:
            response = await until_cancelled(self._client.send(request, stream=True), cancel)
        except httpx.HTTPError as exc:
            raise _transport_error(
                f"Network error contacting generator: {exc}", recoverable=True
            ) from exc

        if not response.is_success:
            await response.aclose()
            log.warning("stream_open_failed", url=self._url, status_code=response.status_code)
            raise _transport_error(
                f"HTTP {response.status_code} from generator",
                recoverable=response.status_code >= 500,
            )

        log.info("stream_opened", url=self._url, status_code=response.status_code)
        return HttpByteStream(response)
