"""Chapter generation and world summarization flows.

Each flow validates its request, renders the prompt, makes a single model call
through a :class:`~sagaforge.services.generation.ModelInvoker` and returns a
result that matches the flow's output shape.  The first failure ends the run:
a :class:`~sagaforge.services.contracts.ValidationError` before any model call,
or a :class:`~sagaforge.services.generation.GenerationFailure` from the call
itself.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Type, TypeVar, Union

from flask import current_app

from .contracts import (
    CHAPTER_TEXT_SHAPE,
    WORLD_SUMMARY_SHAPE,
    ChapterGenerationRequest,
    ChapterGenerationResult,
    OutputShape,
    TextContract,
    ValidationError,
    WorldSummaryRequest,
    WorldSummaryResult,
)
from .generation import GenerationFailure, GenerationSettings, ModelInvoker, build_capability
from .prompts import render_chapter_prompt, render_summary_prompt

LOGGER = logging.getLogger(__name__)

MODEL_INVOKER_KEY = "_MODEL_INVOKER_INSTANCE"

RequestT = TypeVar("RequestT", bound=TextContract)


class FlowState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RENDERING = "rendering"
    INVOKING = "invoking"
    COMPLETED = "completed"
    FAILED = "failed"


class _FlowRun:
    def __init__(self, name: str) -> None:
        self.name = name
        self.state = FlowState.IDLE

    def advance(self, state: FlowState) -> None:
        LOGGER.debug("flow=%s %s -> %s", self.name, self.state.value, state.value)
        self.state = state


async def generate_chapter_text(
    request: Union[ChapterGenerationRequest, Mapping[str, Any]],
    *,
    invoker: Optional[ModelInvoker] = None,
    timeout: Optional[float] = None,
) -> ChapterGenerationResult:
    """Draft a chapter from the supplied lore documents."""

    return await _run_flow(
        "generate_chapter_text",
        request,
        ChapterGenerationRequest,
        render_chapter_prompt,
        CHAPTER_TEXT_SHAPE,
        invoker=invoker,
        timeout=timeout,
    )


async def summarize_world_context(
    request: Union[WorldSummaryRequest, Mapping[str, Any]],
    *,
    invoker: Optional[ModelInvoker] = None,
    timeout: Optional[float] = None,
) -> WorldSummaryResult:
    """Condense a worldbuilding document into its key concepts and elements."""

    return await _run_flow(
        "summarize_world_context",
        request,
        WorldSummaryRequest,
        render_summary_prompt,
        WORLD_SUMMARY_SHAPE,
        invoker=invoker,
        timeout=timeout,
    )


async def _run_flow(
    name: str,
    request: Any,
    request_type: Type[RequestT],
    render: Callable[[RequestT], str],
    shape: OutputShape,
    *,
    invoker: Optional[ModelInvoker],
    timeout: Optional[float],
) -> Any:
    run = _FlowRun(name)
    try:
        run.advance(FlowState.VALIDATING)
        validated = _validate_request(request, request_type)

        run.advance(FlowState.RENDERING)
        prompt = render(validated)

        run.advance(FlowState.INVOKING)
        active_invoker = invoker if invoker is not None else get_model_invoker()
        result = await active_invoker.invoke(prompt, shape, timeout=timeout)
        result = _ensure_shape(result, shape)
    except ValidationError as exc:
        run.advance(FlowState.FAILED)
        LOGGER.info("flow=%s rejected request fields: %s", name, ", ".join(exc.fields))
        raise
    except GenerationFailure as exc:
        run.advance(FlowState.FAILED)
        LOGGER.warning("flow=%s generation failed: %s (cause: %r)", name, exc, exc.cause)
        raise

    run.advance(FlowState.COMPLETED)
    return result


def _validate_request(request: Any, request_type: Type[RequestT]) -> RequestT:
    if isinstance(request, request_type):
        return request.validate()
    return request_type.from_payload(request)


def _ensure_shape(result: Any, shape: OutputShape) -> TextContract:
    try:
        if isinstance(result, shape.result_type):
            return result.validate()
        return shape.coerce(result)
    except ValidationError as exc:
        raise GenerationFailure(
            f"The model reply does not match the '{shape.name}' shape.", cause=exc
        ) from exc


def get_model_invoker() -> ModelInvoker:
    """Return the application's model invoker, building it on first use."""

    app = current_app
    invoker = app.config.get(MODEL_INVOKER_KEY)
    if invoker is not None:
        return invoker

    settings = GenerationSettings.from_config(app.config)
    app.logger.info(
        "Initialising %s text generation with model %s",
        settings.provider,
        settings.local_model_path if settings.provider == "local" else settings.model,
    )
    invoker = ModelInvoker(build_capability(settings), settings)
    app.config[MODEL_INVOKER_KEY] = invoker
    return invoker


__all__ = [
    "FlowState",
    "MODEL_INVOKER_KEY",
    "generate_chapter_text",
    "get_model_invoker",
    "summarize_world_context",
]
