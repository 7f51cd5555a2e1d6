"""Async HTTP client for the Deepgram pre-recorded transcription API.

WHY: The segmentation engine needs word-level timestamps with
confidence and speaker labels. Deepgram returns these in a single
synchronous request (no upload/poll cycle), so one call per file is
enough.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. DeepgramClient is an
async context manager; transcribe() streams the audio file as the
request body to POST /listen with the feature flags from DeepgramConfig
as query parameters, and parses the JSON into a DeepgramResponse.

RULES:
- Always use the async context manager (async with DeepgramClient() as client:)
- Auth header is "Token <key>", not Bearer
- language "auto" is sent as "multi" (code-switching detection)
- Non-English languages use the "-general" variant of the model
- The request honours a CancellationToken; cancelling aborts the upload
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from subtitle_converter.api.models import DeepgramResponse
from subtitle_converter.config import (
    DEEPGRAM_BASE_URL,
    DEEPGRAM_MODEL,
    DEEPGRAM_TIMEOUT_S,
    load_api_key,
)
from subtitle_converter.core.cancellation import CancellationToken, run_cancellable

logger = logging.getLogger(__name__)


class DeepgramAPIError(Exception):
    """Raised when the Deepgram API returns an error response.

    RULES:
    - Always include status_code and message
    - status_code is 0 for timeouts and network failures
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__("Deepgram API error {}: {}".format(status_code, message))


@dataclass
class DeepgramConfig:
    """Feature flags for one transcription request."""

    model: str = DEEPGRAM_MODEL
    language: str = "multi"
    punctuate: bool = True
    paragraphs: bool = True
    smart_format: bool = True
    utterances: bool = True
    utt_split: float = 0.8
    diarize: bool = True

    def resolved_model(self) -> str:
        """Model name, switched to the -general variant for non-English audio."""
        if self.language not in ("en", "multi", "auto") and "general" not in self.model:
            return "{}-general".format(self.model)
        return self.model

    def to_params(self) -> dict[str, str]:
        def _flag(value: bool) -> str:
            return "true" if value else "false"

        return {
            "model": self.resolved_model(),
            "punctuate": _flag(self.punctuate),
            "paragraphs": _flag(self.paragraphs),
            "smart_format": _flag(self.smart_format),
            "utterances": _flag(self.utterances),
            "utt_split": str(self.utt_split),
            "diarize": _flag(self.diarize),
            "language": "multi" if self.language == "auto" else self.language,
        }


class DeepgramClient:
    """Async client for Deepgram pre-recorded transcription.

    RULES:
    - Use as: async with DeepgramClient() as client: ...
    - api_key defaults to load_api_key("deepgram") from .env
    - base_url defaults to DEEPGRAM_BASE_URL from config
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEEPGRAM_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or load_api_key("deepgram")
        self._base_url = (base_url or DEEPGRAM_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> DeepgramClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": "Token {}".format(self._api_key)},
            timeout=httpx.Timeout(self._timeout, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "DeepgramClient must be used as an async context manager: "
                "async with DeepgramClient() as client: ..."
            )
        return self._client

    async def transcribe(
        self,
        file_path: Path,
        config: DeepgramConfig | None = None,
        on_status: Callable[[str], None] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> DeepgramResponse:
        """Transcribe an audio/video file and return the parsed response.

        Args:
            file_path: Path to the audio/video file.
            config: Feature flags; defaults to DeepgramConfig().
            on_status: Optional callback for status updates.
            cancel_token: Optional token; cancelling aborts the request.

        Returns:
            DeepgramResponse with words and utterances.

        Raises:
            DeepgramAPIError: On non-2xx responses, timeouts, or network errors.
            TransformCancelledError: If the token is cancelled.
        """
        client = self._ensure_client()
        config = config or DeepgramConfig()
        file_path = Path(file_path)
        content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if on_status:
            on_status("Uploading {} to Deepgram...".format(file_path.name))
        logger.info(
            "Deepgram transcription: file=%s model=%s language=%s",
            file_path.name, config.resolved_model(), config.language,
        )

        with open(file_path, "rb") as f:
            try:
                resp = await run_cancellable(
                    client.post(
                        "/listen",
                        params=config.to_params(),
                        content=f.read(),
                        headers={"Content-Type": content_type},
                    ),
                    cancel_token,
                )
            except httpx.TimeoutException:
                raise DeepgramAPIError(0, "Request timed out after {:.0f}s".format(self._timeout))
            except httpx.TransportError as exc:
                raise DeepgramAPIError(0, "Network error: {}".format(exc))

        if resp.status_code != 200:
            logger.error("Deepgram error %d: %s", resp.status_code, resp.text[:300])
            raise DeepgramAPIError(resp.status_code, resp.text)

        if on_status:
            on_status("Transcription complete.")
        response = DeepgramResponse.from_dict(resp.json())
        logger.info(
            "Deepgram returned %d words, %d utterances (%.1fs audio)",
            len(response.words), len(response.utterances), response.duration,
        )
        return response
