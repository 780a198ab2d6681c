"""Prompt templates for the chapter and world-summary flows."""

from __future__ import annotations

import re
from typing import Dict, Tuple

from .contracts import ChapterGenerationRequest, WorldSummaryRequest

_PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}")

CHAPTER_PROMPT_TEMPLATE = (
    "You are a fantasy novel writer helping a user draft their next chapter.\n"
    "\n"
    "Use the following information to generate the chapter text:\n"
    "\n"
    "Series Outline: {series_outline}\n"
    "Worldbuilding Information: {worldbuilding_information}\n"
    "Book Outline: {book_outline}\n"
    "Chapter Outline: {chapter_outline}\n"
    "{optional_sections}"
    "\n"
    "Write the chapter text."
)

# Rendered in this order, each only when the request carries a value.
CHAPTER_OPTIONAL_SECTIONS: Tuple[Tuple[str, str], ...] = (
    ("chapter_length", "Target Chapter Length: {chapter_length}\n"),
    ("writing_style", "Emulate the writing style of: {writing_style}\n"),
)

SUMMARY_PROMPT_TEMPLATE = (
    "You are an expert worldbuilding assistant. Please summarize the following world context "
    "into key concepts and elements that can be used for chapter generation.\n"
    "\n"
    "World Context: {world_context}"
)


def render_chapter_prompt(request: ChapterGenerationRequest) -> str:
    """Render the chapter-drafting prompt for ``request``.

    Optional hints are appended as labelled lines after the chapter outline.
    A missing or blank hint leaves no trace in the prompt, label included.
    """

    values: Dict[str, str] = {
        "series_outline": request.series_outline,
        "worldbuilding_information": request.worldbuilding_information,
        "book_outline": request.book_outline,
        "chapter_outline": request.chapter_outline,
    }

    optional_sections = []
    for attribute, section_template in CHAPTER_OPTIONAL_SECTIONS:
        value = getattr(request, attribute)
        if value and value.strip():
            optional_sections.append(_apply_template(section_template, **{attribute: value}))

    return _apply_template(
        CHAPTER_PROMPT_TEMPLATE,
        optional_sections="".join(optional_sections),
        **values,
    )


def render_summary_prompt(request: WorldSummaryRequest) -> str:
    return _apply_template(SUMMARY_PROMPT_TEMPLATE, world_context=request.world_context)


def _apply_template(template: str, **values: str) -> str:
    # Single pass over the template so substituted text is never re-scanned.
    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER_PATTERN.sub(substitute, template)


__all__ = [
    "CHAPTER_OPTIONAL_SECTIONS",
    "CHAPTER_PROMPT_TEMPLATE",
    "SUMMARY_PROMPT_TEMPLATE",
    "render_chapter_prompt",
    "render_summary_prompt",
]
