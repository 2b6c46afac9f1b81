"""Unit tests for the transcription clients."""
import json
import pytest
from unittest.mock import Mock, patch

import httpx
from openai import APIConnectionError

from src.config.settings import Settings
from src.errors import TranscriptionError, TranscriptionTimeoutError, UpstreamServiceError
from src.transcription.transcriber import AssemblyAITranscriber, WhisperTranscriber, poll_until_complete


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        openai_api_key="test-api-key",
        postgres_host="dummy",
        postgres_database="dummy",
        postgres_username="dummy",
        postgres_password="dummy",
        assembly_ai_api_key="aai-key",
        transcription_max_attempts=5,
    )


def make_http_client(handler):
    return httpx.Client(
        base_url="https://api.assemblyai.com/v2",
        headers={"authorization": "aai-key"},
        transport=httpx.MockTransport(handler),
    )


class TestPollUntilComplete:
    """Test job polling."""

    def test_returns_completed_job(self):
        states = iter([{"status": "queued"}, {"status": "processing"}, {"status": "completed", "text": "hi"}])
        sleep = Mock()

        job = poll_until_complete(lambda: next(states), interval=1.0, max_attempts=30, sleep=sleep)

        assert job["text"] == "hi"
        assert sleep.call_count == 3
        sleep.assert_called_with(1.0)

    def test_error_status_raises(self):
        with pytest.raises(TranscriptionError, match="audio too short"):
            poll_until_complete(
                lambda: {"status": "error", "error": "audio too short"},
                interval=1.0, max_attempts=30, sleep=Mock(),
            )

    def test_attempt_ceiling(self):
        fetch = Mock(return_value={"status": "processing"})

        with pytest.raises(TranscriptionTimeoutError) as exc_info:
            poll_until_complete(fetch, interval=1.0, max_attempts=30, sleep=Mock())

        assert exc_info.value.attempts == 30
        assert fetch.call_count == 30


class TestAssemblyAITranscriber:
    """Test the job-style transcription client."""

    def test_upload_submit_poll(self, config):
        requests = []
        polls = iter(["processing", "completed"])

        def handler(request):
            requests.append(request)
            if request.url.path.endswith("/upload"):
                return httpx.Response(200, json={"upload_url": "https://cdn.example/audio"})
            if request.method == "POST":
                return httpx.Response(200, json={"id": "t-1", "status": "queued"})
            status = next(polls)
            return httpx.Response(200, json={"id": "t-1", "status": status, "text": "Bonjour"})

        sleep = Mock()
        transcriber = AssemblyAITranscriber(config, http_client=make_http_client(handler), sleep=sleep)

        text = transcriber.transcribe(b"\x00\x01")

        assert text == "Bonjour"
        assert requests[0].content == b"\x00\x01"
        assert requests[0].headers["authorization"] == "aai-key"
        assert json.loads(requests[1].content) == {
            "audio_url": "https://cdn.example/audio",
            "language_detection": True,
        }
        assert requests[2].url.path.endswith("/transcript/t-1")
        assert sleep.call_count == 2

    def test_timeout(self, config):
        def handler(request):
            if request.url.path.endswith("/upload"):
                return httpx.Response(200, json={"upload_url": "u"})
            return httpx.Response(200, json={"id": "t-1", "status": "processing"})

        transcriber = AssemblyAITranscriber(config, http_client=make_http_client(handler), sleep=Mock())

        with pytest.raises(TranscriptionTimeoutError):
            transcriber.transcribe(b"audio")

    def test_http_failure_is_upstream_error(self, config):
        transcriber = AssemblyAITranscriber(
            config,
            http_client=make_http_client(lambda request: httpx.Response(500, text="boom")),
            sleep=Mock(),
        )

        with pytest.raises(UpstreamServiceError):
            transcriber.transcribe(b"audio")

    def test_requires_api_key(self, config):
        config.assembly_ai_api_key = None

        with pytest.raises(ValueError):
            AssemblyAITranscriber(config)


class TestWhisperTranscriber:
    """Test the OpenAI transcription client."""

    @patch('src.transcription.transcriber.OpenAI')
    def test_transcribe(self, mock_openai, config):
        create = mock_openai.return_value.audio.transcriptions.create
        create.return_value = Mock(text="Hello there")

        assert WhisperTranscriber(config).transcribe(b"audio") == "Hello there"
        kwargs = create.call_args.kwargs
        assert kwargs["file"] == ("audio.webm", b"audio", "audio/webm")
        assert kwargs["model"] == "whisper-1"

    @patch('src.transcription.transcriber.OpenAI')
    def test_retries_once_as_wav(self, mock_openai, config):
        create = mock_openai.return_value.audio.transcriptions.create
        create.side_effect = [
            APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")),
            Mock(text="Second try"),
        ]

        assert WhisperTranscriber(config).transcribe(b"audio") == "Second try"
        assert create.call_args.kwargs["file"] == ("audio.wav", b"audio", "audio/wav")

    @patch('src.transcription.transcriber.OpenAI')
    def test_both_attempts_fail(self, mock_openai, config):
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        create = mock_openai.return_value.audio.transcriptions.create
        create.side_effect = APIConnectionError(request=request)

        with pytest.raises(TranscriptionError) as exc_info:
            WhisperTranscriber(config).transcribe(b"audio")

        assert create.call_count == 2
        assert isinstance(exc_info.value.__cause__, APIConnectionError)
