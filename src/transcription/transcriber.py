# src/transcription/transcriber.py
"""
Speech-to-text for voice feedback.

Two backends: the OpenAI audio endpoint (synchronous) and AssemblyAI, which is
job based and needs polling until the job reaches a terminal state.
"""

from typing import Callable, Optional
import time
import logging

import httpx
from openai import OpenAI, OpenAIError

from src.config.settings import Settings
from src.errors import TranscriptionError, TranscriptionTimeoutError, UpstreamServiceError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "webm": "audio/webm",
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
}


def _content_type(filename: str) -> str:
    return CONTENT_TYPES.get(filename.rsplit(".", 1)[-1].lower(), "application/octet-stream")


class WhisperTranscriber:
    """OpenAI audio transcription client."""

    def __init__(self, config: Settings):
        self.config = config
        self.client = OpenAI(api_key=config.openai_api_key, timeout=config.extraction_timeout_seconds)
        self.model = config.openai_transcription_model

    def _transcribe_file(self, audio: bytes, filename: str) -> str:
        response = self.client.audio.transcriptions.create(
            file=(filename, audio, _content_type(filename)),
            model=self.model,
        )
        return response.text

    def transcribe(self, audio: bytes, filename: str = "audio.webm") -> str:
        """
        Transcribe an audio recording.

        Browsers record WebM, which the endpoint sometimes rejects; a failed
        attempt is retried once with the same bytes declared as WAV.

        Raises:
            TranscriptionError: Both attempts failed
        """
        logger.info(f"Transcribing {len(audio)} bytes as {filename}")
        try:
            return self._transcribe_file(audio, filename)
        except OpenAIError as e:
            logger.warning(f"Transcription as {filename} failed, retrying as WAV: {e}")
            first_error = e

        try:
            return self._transcribe_file(audio, "audio.wav")
        except OpenAIError as e:
            logger.error(f"WAV transcription attempt also failed: {e}")
            raise TranscriptionError(f"Transcription failed: {e}") from first_error


def poll_until_complete(
    fetch: Callable[[], dict],
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    Poll a transcription job until it completes.

    Args:
        fetch: Returns the current job state (a dict with a "status" key)
        interval: Seconds to wait before each poll
        max_attempts: Maximum number of polls
        sleep: Injected for tests

    Returns:
        The completed job

    Raises:
        TranscriptionError: The job ended with status "error"
        TranscriptionTimeoutError: No terminal status after max_attempts polls
    """
    for attempt in range(1, max_attempts + 1):
        sleep(interval)
        job = fetch()
        status = job.get("status")
        logger.debug(f"Polling attempt {attempt}/{max_attempts}: status {status}")

        if status == "completed":
            return job
        if status == "error":
            raise TranscriptionError(f"Transcription failed: {job.get('error')}")

    raise TranscriptionTimeoutError(max_attempts)


class AssemblyAITranscriber:
    """AssemblyAI client: upload, submit a job, poll for the transcript."""

    def __init__(self, config: Settings, http_client: Optional[httpx.Client] = None,
                 sleep: Callable[[float], None] = time.sleep):
        if not config.assembly_ai_api_key:
            raise ValueError("Missing ASSEMBLY_AI_API_KEY")
        self.config = config
        self.client = http_client or httpx.Client(
            base_url=config.assembly_ai_base_url,
            headers={"authorization": config.assembly_ai_api_key},
            timeout=30,
        )
        self.sleep = sleep

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            r = self.client.request(method, url, **kwargs)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPError as e:
            logger.error(f"AssemblyAI {method} {url} failed: {e}")
            raise UpstreamServiceError(f"transcription request failed: {e}") from e

    def transcribe(self, audio: bytes) -> str:
        """
        Transcribe an audio recording with automatic language detection.

        Raises:
            UpstreamServiceError: An HTTP call failed
            TranscriptionError: The job ended in an error state
            TranscriptionTimeoutError: The job did not finish in time
        """
        logger.info(f"Uploading {len(audio)} bytes to AssemblyAI")
        upload = self._request(
            "POST", "/upload",
            content=audio,
            headers={"content-type": "application/octet-stream"},
        )

        job = self._request(
            "POST", "/transcript",
            json={"audio_url": upload["upload_url"], "language_detection": True},
        )
        transcript_id = job["id"]
        logger.info(f"Transcription job submitted: {transcript_id}")

        completed = poll_until_complete(
            lambda: self._request("GET", f"/transcript/{transcript_id}"),
            interval=self.config.transcription_poll_interval_seconds,
            max_attempts=self.config.transcription_max_attempts,
            sleep=self.sleep,
        )
        return completed.get("text") or ""

    def close(self) -> None:
        self.client.close()
