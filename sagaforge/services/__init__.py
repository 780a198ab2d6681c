"""Service layer helpers for AI-assisted chapter drafting."""

from __future__ import annotations

from .chapter_flows import (  # noqa: F401
    FlowState,
    generate_chapter_text,
    get_model_invoker,
    summarize_world_context,
)
from .contracts import (  # noqa: F401
    ChapterGenerationRequest,
    ChapterGenerationResult,
    ValidationError,
    WorldSummaryRequest,
    WorldSummaryResult,
)
from .generation import (  # noqa: F401
    GenerationFailure,
    GenerationSettings,
    GenerationTimeout,
    ModelInvoker,
)

__all__ = [
    "ChapterGenerationRequest",
    "ChapterGenerationResult",
    "FlowState",
    "GenerationFailure",
    "GenerationSettings",
    "GenerationTimeout",
    "ModelInvoker",
    "ValidationError",
    "WorldSummaryRequest",
    "WorldSummaryResult",
    "generate_chapter_text",
    "get_model_invoker",
    "summarize_world_context",
]
