"""Handles Speech-to-Text transcription through a remote HTTP API."""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import requests

from .models import Segment, SegmentResult
from .exceptions import (
    AuthenticationError,
    DecodeError,
    SegmentationError,
    ServiceError,
    TranscriptionError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/audio/transcriptions"
DEFAULT_MODEL = "whisper-1"


class Transcriber(ABC):
    """Abstract base class for transcription services."""

    @abstractmethod
    def transcribe_bytes(self, data: bytes, filename: str, content_type: str) -> str:
        """
        Transcribes one chunk of encoded audio.

        Args:
            data: The encoded audio (any container the service accepts).
            filename: File name reported to the service.
            content_type: Media type of the data.

        Returns:
            The recognized text.

        Raises:
            TranscriptionError: One of its subclasses, describing why the call failed.
        """
        pass

    def transcribe_segment(self, segment: Segment) -> SegmentResult:
        """
        Transcribes a single segment, reporting failures as a failed SegmentResult.

        Performs exactly one call to the service; retrying is up to the caller.
        """
        try:
            data = segment.read_payload()
        except (OSError, ValueError) as e:
            logger.error(f"Could not read payload of segment {segment.index}: {e}")
            return SegmentResult.failure(segment.index, SegmentationError(str(e), index=segment.index))

        filename = segment.filename or f"segment_{segment.index:03d}"
        try:
            text = self.transcribe_bytes(data, filename, segment.content_type)
        except TranscriptionError as e:
            logger.warning(f"Segment {segment.index} failed with {type(e).__name__}: {e}")
            return SegmentResult.failure(segment.index, e)
        return SegmentResult.success(segment.index, text)


class OpenAITranscriber(Transcriber):
    """Implements transcription with OpenAI's audio transcription endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 60.0,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initializes the OpenAITranscriber.

        Args:
            api_key: Bearer token sent with every request.
            model: Name of the transcription model (e.g. "whisper-1").
            endpoint: URL of the transcription endpoint.
            timeout: Per-request wall-clock timeout in seconds.
            language: Optional ISO-639-1 hint passed to the model.
            prompt: Optional text to guide the model's style or vocabulary.
            temperature: Optional sampling temperature.
            session: Optional requests.Session; one is created if omitted.
        """
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout
        self.language = language
        self.prompt = prompt
        self.temperature = temperature
        self.session = session or requests.Session()
        logger.info(f"Initializing OpenAITranscriber with model '{self.model}' at {self.endpoint} (timeout {self.timeout}s)")

    def _form_fields(self) -> dict:
        fields = {'model': self.model}
        if self.language:
            fields['language'] = self.language
        if self.prompt:
            fields['prompt'] = self.prompt
        if self.temperature is not None:
            fields['temperature'] = str(self.temperature)
        return fields

    def _read_body(self, response, deadline: float) -> bytes:
        """Reads a streamed response body, raising TransportError once the deadline passes."""
        chunks = []
        if time.monotonic() > deadline:
            raise TransportError(f"Request exceeded the {self.timeout}s timeout before the response arrived")
        # Single-byte reads return as soon as any data is buffered, so a slow sender
        # cannot hold a read past the deadline. Response bodies here are small JSON documents.
        for chunk in response.iter_content(chunk_size=1):
            chunks.append(chunk)
            if time.monotonic() > deadline:
                raise TransportError(f"Request exceeded the {self.timeout}s timeout while reading the response")
        return b"".join(chunks)

    def transcribe_bytes(self, data: bytes, filename: str, content_type: str) -> str:
        """
        Sends one multipart POST and returns the 'text' field of the JSON response.

        Raises:
            AuthenticationError: If no API key is set or the service rejects it.
            TransportError: On connection failures and timeouts.
            ServiceError: On any other non-200 response.
            DecodeError: If the body is not JSON with a string 'text' field.
        """
        if not self.api_key:
            raise AuthenticationError("No API key configured")

        # requests applies its timeout per socket operation; the deadline caps the whole call.
        deadline = time.monotonic() + self.timeout
        logger.debug(f"Uploading {filename} ({len(data)} bytes, {content_type}) to {self.endpoint}")
        try:
            response = self.session.post(
                self.endpoint,
                headers={'Authorization': f"Bearer {self.api_key}"},
                files={'file': (filename, data, content_type)},
                data=self._form_fields(),
                timeout=self.timeout,
                stream=True,
            )
            try:
                raw_body = self._read_body(response, deadline)
            finally:
                response.close()
        except requests.Timeout as e:
            raise TransportError(f"Request timed out after {self.timeout}s: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Failed to send request: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Credential rejected: {response.status_code} {_error_message(raw_body, response.reason)}"
            )
        if response.status_code != 200:
            raise ServiceError(
                f"Non-200 response: {response.status_code} {_error_message(raw_body, response.reason)}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )

        try:
            body = json.loads(raw_body.decode('utf-8'))
        except ValueError as e:
            raise DecodeError(f"Failed to decode JSON response: {e}") from e
        if not isinstance(body, dict) or not isinstance(body.get('text'), str):
            raise DecodeError(f"Response has no 'text' string field: {str(body)[:200]}")

        text = body['text'].strip()
        logger.debug(f"Received {len(text)} characters for {filename}")
        return text


def _error_message(raw_body: bytes, reason: Optional[str]) -> str:
    """Best-effort extraction of the service's error message."""
    text = raw_body.decode('utf-8', errors='replace')
    try:
        body = json.loads(text)
    except ValueError:
        return (text or reason or "").strip()[:200]
    if isinstance(body, dict) and isinstance(body.get('error'), dict):
        return str(body['error'].get('message', ''))
    return str(body)[:200]


def _retry_after(response) -> Optional[float]:
    value = response.headers.get('Retry-After') if response.headers is not None else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
