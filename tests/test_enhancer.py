"""Tests for the text enhancement service and its model fallback."""

import asyncio
import json

import httpx
import pytest

from scanreport.llm.client import ChatCompletionClient, ChatCompletionError, ChatServiceUnavailable
from scanreport.llm.enhancer import (
    AttemptState,
    EnhancementOptions,
    TextEnhancementService,
    build_enhancement_service,
)
from scanreport.llm.fallback import mock_enhance_text
from scanreport.utils.config import AppConfig, EnhancementConfig

_MODELS = ["primary", "secondary", "tertiary"]
_RAW = "some raw text\n\nsecond paragraph"


def _config(**overrides) -> EnhancementConfig:
    return EnhancementConfig(models=_MODELS, **overrides)


class TestWithoutCredential:
    """The service falls back to the offline mock when no backend exists."""

    def test_returns_mock_document(self) -> None:
        service = TextEnhancementService(_config(), backend=None)
        doc = asyncio.run(service.enhance("some raw text", EnhancementOptions(language="french")))

        assert doc.error is None
        assert doc.model is None
        assert doc.sections[0].title == "Introduction"
        assert doc.sections[-1].title == "Conclusion"
        assert doc.sections[-1].content.startswith(
            "Based on the analysis presented in this report"
        )
        assert service.last_ledger is None

    def test_warns_once(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("WARNING")
        service = TextEnhancementService(_config(), backend=None)
        asyncio.run(service.enhance("a"))
        asyncio.run(service.enhance("b"))
        assert caplog.text.count("No chat-completion credential configured") == 1

    def test_blank_text_rejected(self) -> None:
        service = TextEnhancementService(_config(), backend=None)
        with pytest.raises(ValueError):
            asyncio.run(service.enhance("   "))


class TestModelFallback:
    """Tests for the ordered model fallback chain."""

    def test_first_success_wins(self, scripted_chat) -> None:
        chat = scripted_chat(["# Report\n\nDone"])
        service = TextEnhancementService(_config(), chat)

        doc = asyncio.run(service.enhance(_RAW))

        assert doc.model == "primary"
        assert doc.error is None
        assert doc.sections[0].title == "Report"
        assert [r.model for r in chat.requests] == ["primary"]

    def test_third_candidate_after_two_failures(self, scripted_chat) -> None:
        chat = scripted_chat(
            [
                ChatCompletionError("bad request"),
                ChatServiceUnavailable("rate limited"),
                "# Evaluation\n\nAll good",
            ]
        )
        service = TextEnhancementService(_config(), chat)

        doc = asyncio.run(service.enhance(_RAW))

        assert doc.model == "tertiary"
        assert doc.error is None
        assert [r.model for r in chat.requests] == _MODELS

        ledger = service.last_ledger
        assert ledger.state == AttemptState.SUCCESS
        assert ledger.winner == "tertiary"
        assert [a.error for a in ledger.attempts] == ["bad request", "rate limited", None]

    def test_never_tries_a_fourth_candidate(self, scripted_chat) -> None:
        chat = scripted_chat([ChatCompletionError("x")] * 2 + ["ok"] + ["unused"])
        service = TextEnhancementService(_config(), chat)
        asyncio.run(service.enhance(_RAW))
        assert len(chat.requests) == 3
        assert chat.outcomes == ["unused"]

    def test_empty_content_moves_to_next_model(self, scripted_chat) -> None:
        chat = scripted_chat(["   ", "text"])
        service = TextEnhancementService(_config(), chat)
        doc = asyncio.run(service.enhance(_RAW))
        assert doc.model == "secondary"
        assert service.last_ledger.attempts[0].error == "Empty response from model"

    def test_unexpected_exception_does_not_escape(self, scripted_chat) -> None:
        chat = scripted_chat([RuntimeError("socket closed"), "text"])
        doc = asyncio.run(TextEnhancementService(_config(), chat).enhance(_RAW))
        assert doc.model == "secondary"

    def test_all_candidates_fail(self, failing_chat) -> None:
        service = TextEnhancementService(_config(), failing_chat)

        doc = asyncio.run(service.enhance(_RAW))

        assert doc.error == "Internal error from model three"
        assert doc.model is None
        assert [s.title for s in doc.sections] == ["Report", "Section 1", "Conclusion"]
        assert doc.sections[0].content == "some raw text"
        assert service.last_ledger.state == AttemptState.ALL_FAILED
        assert service.last_ledger.last_error == "Internal error from model three"

    def test_request_shape(self, scripted_chat) -> None:
        chat = scripted_chat(["text"])
        service = TextEnhancementService(_config(max_tokens=1234, temperature=0.5), chat)
        options = EnhancementOptions(
            language="english", report_type="incident", additional_instructions="Be brief"
        )

        asyncio.run(service.enhance(_RAW, options))

        request = chat.requests[0]
        assert request.system_prompt.startswith("You are an expert report writer")
        assert _RAW in request.user_prompt
        assert "Report Type: incident" in request.user_prompt
        assert "Additional Instructions: Be brief" in request.user_prompt
        assert request.max_tokens == 1234
        assert request.temperature == 0.5

    def test_same_prompt_for_every_candidate(self, failing_chat) -> None:
        asyncio.run(TextEnhancementService(_config(), failing_chat).enhance(_RAW))
        prompts = {r.user_prompt for r in failing_chat.requests}
        assert len(prompts) == 1

    def test_all_http_500_end_to_end(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.read().decode())
            return httpx.Response(500, json={"error": {"message": f"failure {len(calls)}"}})

        client = ChatCompletionClient(
            "https://chat.example/v1", "sk", retry_delay=0, transport=httpx.MockTransport(handler)
        )
        doc = asyncio.run(TextEnhancementService(_config(), client).enhance(_RAW))

        assert len(calls) == 3
        assert doc.error == "failure 3"
        assert doc.sections[-1].title == "Conclusion"

    def test_rate_limits_advance_to_next_model(self) -> None:
        models: list[str] = []
        statuses = [429, 429, 200]

        def handler(request: httpx.Request) -> httpx.Response:
            models.append(json.loads(request.read())["model"])
            status = statuses[len(models) - 1]
            if status != 200:
                return httpx.Response(status, json={"error": {"message": "rate limited"}})
            return httpx.Response(200, json={"choices": [{"message": {"content": "# Done\n\nok"}}]})

        settings = AppConfig(
            enhancement=_config(retry_delay=0), credentials={"together_api_key": "tk"}
        )
        service = build_enhancement_service(settings, transport=httpx.MockTransport(handler))

        async def run():
            try:
                return await service.enhance(_RAW)
            finally:
                await service.aclose()

        doc = asyncio.run(run())

        assert models == _MODELS
        assert doc.model == "tertiary"
        assert doc.error is None


class TestStreaming:
    """Tests for the single-model streaming variant."""

    def test_chunks_accumulated_and_parsed_once(self, scripted_chat) -> None:
        chat = scripted_chat([], chunks=["# Title\n\n", "Body ", "text"])
        service = TextEnhancementService(_config(streaming_enabled=True), chat)

        doc = asyncio.run(service.enhance(_RAW, EnhancementOptions(use_streaming=True)))

        assert doc.model == service.config.streaming_model
        assert doc.text == "# Title\n\nBody text"
        assert [s.title for s in doc.sections] == ["Title"]
        assert len(chat.requests) == 1

    def test_stream_failure_falls_back_without_other_models(self, scripted_chat) -> None:
        chat = scripted_chat(["never used"], chunks=["partial", ChatCompletionError("cut off")])
        service = TextEnhancementService(_config(streaming_enabled=True), chat)

        doc = asyncio.run(service.enhance(_RAW, EnhancementOptions(use_streaming=True)))

        assert doc.error == "cut off"
        assert doc.sections[0].title == "Report"
        assert chat.outcomes == ["never used"]
        assert service.last_ledger.state == AttemptState.ALL_FAILED

    def test_streaming_disabled_uses_blocking_chain(self, scripted_chat) -> None:
        chat = scripted_chat(["blocking answer"], chunks=["streamed"])
        service = TextEnhancementService(_config(streaming_enabled=False), chat)

        doc = asyncio.run(service.enhance(_RAW, EnhancementOptions(use_streaming=True)))

        assert doc.model == "primary"
        assert doc.text == "blocking answer"

    def test_stream_chunks_without_credential(self) -> None:
        service = TextEnhancementService(_config(), backend=None)

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks(_RAW)]

        assert asyncio.run(collect()) == [mock_enhance_text(_RAW)]

    def test_stream_chunks_passthrough(self, scripted_chat) -> None:
        service = TextEnhancementService(_config(), scripted_chat([], chunks=["a", "b"]))

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks(_RAW)]

        assert asyncio.run(collect()) == ["a", "b"]

    def test_stream_chunks_error_before_first_chunk(self, scripted_chat) -> None:
        service = TextEnhancementService(
            _config(), scripted_chat([], chunks=[ChatCompletionError("down")])
        )

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks(_RAW)]

        chunks = asyncio.run(collect())
        assert len(chunks) == 1
        assert chunks[0].startswith("# Report\n\nsome raw text")

    def test_stream_chunks_unexpected_error(self, scripted_chat) -> None:
        service = TextEnhancementService(
            _config(), scripted_chat([], chunks=["partial", RuntimeError("socket closed")])
        )

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks(_RAW)]

        assert asyncio.run(collect()) == ["partial"]

    def test_stream_chunks_unexpected_error_before_first_chunk(self, scripted_chat) -> None:
        service = TextEnhancementService(
            _config(), scripted_chat([], chunks=[RuntimeError("socket closed")])
        )

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks(_RAW)]

        chunks = asyncio.run(collect())
        assert chunks[0].startswith("# Report\n\nsome raw text")

    def test_stream_chunks_blank_text_rejected(self) -> None:
        service = TextEnhancementService(_config(), backend=None)

        async def collect() -> list[str]:
            return [c async for c in service.stream_chunks("  ")]

        with pytest.raises(ValueError):
            asyncio.run(collect())


class TestBuildEnhancementService:
    def test_without_credential(self) -> None:
        service = build_enhancement_service(AppConfig())
        assert service.is_configured is False

    def test_with_credential(self) -> None:
        service = build_enhancement_service(AppConfig(credentials={"together_api_key": "tk"}))
        assert service.is_configured is True
        assert isinstance(service.backend, ChatCompletionClient)
        asyncio.run(service.aclose())
