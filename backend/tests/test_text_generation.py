"""Tests for the text generation adapter.

litellm is mocked; no network calls are made.
"""

import asyncio
import json
from unittest.mock import MagicMock, patch

import litellm
import pytest

from canvaschat.services.text_generation import (
    GENERIC_ERROR_MESSAGE,
    IMAGE_SUGGESTION,
    INVALID_KEY_MESSAGE,
    NOT_CONFIGURED_MESSAGE,
    ErrorKind,
    TextGenerator,
    build_prompt,
    classify_error,
)


def _completion_response(text):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    return response


def _stream_part(text):
    part = MagicMock()
    part.choices = [MagicMock()]
    part.choices[0].delta.content = text
    return part


class _FakeStream:
    def __init__(self, parts, fail_after=None):
        self.parts = parts
        self.fail_after = fail_after

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for i, part in enumerate(self.parts):
            if self.fail_after is not None and i == self.fail_after:
                raise Exception("503 Service Unavailable")
            yield part


async def _collect(agen):
    return [chunk async for chunk in agen]


class TestPrompt:
    def test_wraps_user_message(self):
        prompt = build_prompt("What is Rust?")
        assert prompt.startswith("You are a helpful AI assistant.")
        assert "User: What is Rust?" in prompt


class TestClassifyError:
    @pytest.mark.parametrize("message", [
        "Resource has been exhausted (e.g. check quota).",
        "Rate limit reached",
        "The model is overloaded. Please try again later.",
        "503 Service Unavailable",
    ])
    def test_overload_markers(self, message):
        assert classify_error(Exception(message)) == ErrorKind.OVERLOADED

    def test_api_key_marker(self):
        assert classify_error(Exception("API_KEY_INVALID")) == ErrorKind.INVALID_CREDENTIAL

    def test_unknown(self):
        assert classify_error(Exception("socket closed")) == ErrorKind.UNKNOWN

    def test_litellm_rate_limit_type(self):
        exc = litellm.RateLimitError(message="slow down", llm_provider="gemini", model="gemini-1.5-flash")
        assert classify_error(exc) == ErrorKind.OVERLOADED

    def test_litellm_auth_type(self):
        exc = litellm.AuthenticationError(message="bad key", llm_provider="gemini", model="gemini-1.5-flash")
        assert classify_error(exc) == ErrorKind.INVALID_CREDENTIAL


class TestGenerate:
    def test_missing_key_skips_call(self):
        with patch("canvaschat.services.text_generation.litellm.completion") as mock_completion:
            result = TextGenerator(api_key="").generate("Hello")

        mock_completion.assert_not_called()
        assert result.success is False
        assert result.response == NOT_CONFIGURED_MESSAGE
        assert result.error == "Gemini API key not configured"
        assert result.error_kind == ErrorKind.MISSING_CONFIG

    @patch("canvaschat.services.text_generation.litellm.completion")
    def test_success(self, mock_completion):
        mock_completion.return_value = _completion_response("Hi there")

        result = TextGenerator(api_key="fake-key", model="gemini/gemini-1.5-flash").generate("Hello")

        assert result.success is True
        assert result.response == "Hi there"
        assert result.error is None
        kwargs = mock_completion.call_args.kwargs
        assert kwargs["model"] == "gemini/gemini-1.5-flash"
        assert kwargs["api_key"] == "fake-key"
        assert "User: Hello" in kwargs["messages"][0]["content"]
        assert mock_completion.call_count == 1

    @patch("canvaschat.services.text_generation.litellm.completion")
    def test_quota_failure_suggests_image_command(self, mock_completion):
        mock_completion.side_effect = Exception("429 You exceeded your current quota")

        result = TextGenerator(api_key="fake-key").generate("Hello")

        assert result.success is False
        assert result.response == IMAGE_SUGGESTION
        assert "/image" in result.response
        assert result.error == "Service temporarily overloaded"
        # single attempt, no retry
        assert mock_completion.call_count == 1

    @patch("canvaschat.services.text_generation.litellm.completion")
    def test_invalid_key(self, mock_completion):
        mock_completion.side_effect = Exception("API_KEY_INVALID")

        result = TextGenerator(api_key="bad").generate("Hello")

        assert result.response == INVALID_KEY_MESSAGE
        assert result.error == "Invalid API key"

    @patch("canvaschat.services.text_generation.litellm.completion")
    def test_unknown_failure_keeps_error_text(self, mock_completion):
        mock_completion.side_effect = Exception("connection reset")

        result = TextGenerator(api_key="fake-key").generate("Hello")

        assert result.response == GENERIC_ERROR_MESSAGE
        assert result.error == "connection reset"
        assert result.error_kind == ErrorKind.UNKNOWN

    @patch("canvaschat.services.text_generation.litellm.completion")
    def test_calls_are_logged(self, mock_completion, tmp_path, monkeypatch):
        monkeypatch.setattr("canvaschat.config.settings.log_dir", tmp_path)
        mock_completion.return_value = _completion_response("ok")

        TextGenerator(api_key="fake-key").generate("Hello")

        log_files = list(tmp_path.glob("llm_calls_*.jsonl"))
        assert len(log_files) == 1
        entry = json.loads(log_files[0].read_text().splitlines()[0])
        assert entry["event"] == "llm_call"
        assert entry["success"] is True
        assert entry["prompt_length"] == 5


class TestStream:
    def test_missing_key_yields_single_terminal_chunk(self):
        chunks = asyncio.run(_collect(TextGenerator(api_key="").stream("Hello")))

        assert len(chunks) == 1
        assert chunks[0].done is True
        assert chunks[0].success is False
        assert chunks[0].text == NOT_CONFIGURED_MESSAGE

    def test_yields_fragments_then_done(self):
        async def fake_acompletion(**kwargs):
            assert kwargs["stream"] is True
            return _FakeStream([_stream_part("Hi"), _stream_part(None), _stream_part(" there")])

        with patch("canvaschat.services.text_generation.litellm.acompletion", side_effect=fake_acompletion):
            chunks = asyncio.run(_collect(TextGenerator(api_key="fake-key").stream("Hello")))

        assert [(c.text, c.done) for c in chunks] == [("Hi", False), (" there", False), ("", True)]
        assert chunks[-1].success is True

    def test_failure_mid_stream_ends_with_apology(self):
        async def fake_acompletion(**kwargs):
            return _FakeStream([_stream_part("Hi"), _stream_part("!")], fail_after=1)

        with patch("canvaschat.services.text_generation.litellm.acompletion", side_effect=fake_acompletion):
            chunks = asyncio.run(_collect(TextGenerator(api_key="fake-key").stream("Hello")))

        assert chunks[0].text == "Hi"
        assert chunks[-1].done is True
        assert chunks[-1].success is False
        assert chunks[-1].text == IMAGE_SUGGESTION
        assert chunks[-1].error == "Service temporarily overloaded"
