import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sagaforge.services.contracts import (
    CHAPTER_TEXT_SHAPE,
    WORLD_SUMMARY_SHAPE,
    ChapterGenerationResult,
    ValidationError,
    WorldSummaryResult,
)
from sagaforge.services.generation import (
    GenerationFailure,
    GenerationSettings,
    GenerationTimeout,
    ModelInvoker,
    OpenAIStructuredGenerator,
    build_capability,
)


class StubCapability:
    def __init__(self, reply=None, *, error=None, delay=0.0, structured_output=True):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.structured_output = structured_output
        self.calls = []

    async def invoke(self, prompt, shape):
        self.calls.append((prompt, shape))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _invoke(capability, shape=CHAPTER_TEXT_SHAPE, *, timeout=None, settings=None):
    invoker = ModelInvoker(capability, settings or GenerationSettings(timeout_seconds=5))
    return asyncio.run(invoker.invoke("Write the chapter text.", shape, timeout=timeout))


def test_structured_mapping_reply_becomes_result():
    capability = StubCapability({"chapterText": "Once upon a time..."})

    result = _invoke(capability)

    assert result == ChapterGenerationResult(chapter_text="Once upon a time...")
    assert capability.calls == [("Write the chapter text.", CHAPTER_TEXT_SHAPE)]


def test_json_text_reply_is_parsed_including_code_fences():
    fenced = "```json\n" + json.dumps({"summary": "Key points..."}) + "\n```"

    assert _invoke(StubCapability(json.dumps({"summary": "Key points..."})), WORLD_SUMMARY_SHAPE) == (
        WorldSummaryResult(summary="Key points...")
    )
    assert _invoke(StubCapability(fenced), WORLD_SUMMARY_SHAPE) == WorldSummaryResult(summary="Key points...")


def test_malformed_json_from_structured_capability_fails():
    with pytest.raises(GenerationFailure) as excinfo:
        _invoke(StubCapability("Once upon a time..."))

    assert isinstance(excinfo.value.cause, json.JSONDecodeError)


def test_prose_from_raw_text_capability_fills_the_single_field():
    capability = StubCapability("  The ferry witch smiled.  ", structured_output=False)

    assert _invoke(capability) == ChapterGenerationResult(chapter_text="The ferry witch smiled.")


def test_raw_text_capability_still_honours_json_objects():
    capability = StubCapability('{"chapterText": "Dawn broke."}', structured_output=False)

    assert _invoke(capability) == ChapterGenerationResult(chapter_text="Dawn broke.")


def test_empty_raw_text_reply_fails():
    with pytest.raises(GenerationFailure):
        _invoke(StubCapability("   ", structured_output=False))


def test_reply_with_wrong_shape_fails():
    with pytest.raises(GenerationFailure) as excinfo:
        _invoke(StubCapability({"text": "Once upon a time..."}))

    assert isinstance(excinfo.value.cause, ValidationError)


def test_non_string_field_fails():
    with pytest.raises(GenerationFailure):
        _invoke(StubCapability({"chapterText": ["page one", "page two"]}))


def test_capability_errors_are_wrapped_with_their_cause():
    error = RuntimeError("quota exceeded")
    capability = StubCapability(error=error)

    with pytest.raises(GenerationFailure) as excinfo:
        _invoke(capability)

    assert excinfo.value.cause is error
    assert len(capability.calls) == 1


def test_call_timeout_raises_timeout_failure():
    capability = StubCapability({"chapterText": "late"}, delay=1.0)

    with pytest.raises(GenerationTimeout) as excinfo:
        _invoke(capability, timeout=0.01)

    assert isinstance(excinfo.value, GenerationFailure)
    assert len(capability.calls) == 1


def test_configured_timeout_applies_without_override():
    capability = StubCapability({"chapterText": "late"}, delay=1.0)

    with pytest.raises(GenerationTimeout):
        _invoke(capability, settings=GenerationSettings(timeout_seconds=0.01))


def test_settings_from_config():
    settings = GenerationSettings.from_config(
        {
            "GENERATION_PROVIDER": "OpenAI",
            "GENERATION_MODEL": "gpt-4o",
            "OPENAI_API_KEY": "sk-test-123456789",
            "GENERATION_TEMPERATURE": "0.4",
            "GENERATION_TOP_P": None,
            "GENERATION_MAX_OUTPUT_TOKENS": 2048,
            "GENERATION_TIMEOUT_SECONDS": "30",
        }
    )

    assert settings.provider == "openai"
    assert settings.model == "gpt-4o"
    assert settings.temperature == 0.4
    assert settings.top_p is None
    assert settings.max_output_tokens == 2048
    assert settings.timeout_seconds == 30.0
    assert "sk-test-123456789" not in "".join(settings.signature())


class _FakeEndpoint:
    def __init__(self, response):
        self.response = response
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _chat_client(content):
    message = SimpleNamespace(content=content, refusal=None)
    completions = _FakeEndpoint(SimpleNamespace(choices=[SimpleNamespace(message=message)]))
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_openai_chat_call_requests_schema_guided_output():
    client, completions = _chat_client(json.dumps({"chapterText": "Once upon a time..."}))
    generator = OpenAIStructuredGenerator(GenerationSettings(model="gpt-4o-mini"), client=client)

    result = _invoke(generator)

    assert result == ChapterGenerationResult(chapter_text="Once upon a time...")
    assert len(completions.calls) == 1
    kwargs = completions.calls[0]
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"] == [{"role": "user", "content": "Write the chapter text."}]
    assert kwargs["response_format"]["type"] == "json_schema"
    assert kwargs["response_format"]["json_schema"]["name"] == "chapter_text"
    assert kwargs["response_format"]["json_schema"]["schema"] == CHAPTER_TEXT_SHAPE.json_schema()
    assert "top_p" not in kwargs


def test_openai_responses_api_used_for_newer_models():
    responses = _FakeEndpoint(SimpleNamespace(output_text=json.dumps({"summary": "Key points..."})))
    client = SimpleNamespace(responses=responses)
    generator = OpenAIStructuredGenerator(GenerationSettings(model="gpt-5-mini"), client=client)

    result = _invoke(generator, WORLD_SUMMARY_SHAPE)

    assert result == WorldSummaryResult(summary="Key points...")
    text_format = responses.calls[0]["text"]["format"]
    assert text_format["type"] == "json_schema"
    assert text_format["name"] == "world_summary"
    assert responses.calls[0]["input"] == "Write the chapter text."


def test_openai_empty_reply_fails():
    client, _completions = _chat_client("")
    generator = OpenAIStructuredGenerator(GenerationSettings(), client=client)

    with pytest.raises(GenerationFailure):
        _invoke(generator)


def test_openai_generator_requires_api_key():
    with pytest.raises(GenerationFailure):
        OpenAIStructuredGenerator(GenerationSettings(api_key=""))


def test_build_capability_selects_backend():
    capability = build_capability(GenerationSettings(provider="openai", api_key="sk-test"))

    assert isinstance(capability, OpenAIStructuredGenerator)
    assert capability.structured_output is True

    with pytest.raises(GenerationFailure):
        build_capability(GenerationSettings(provider="local", local_model_path=None))
    with pytest.raises(GenerationFailure):
        build_capability(GenerationSettings(provider="carrier-pigeon"))
