"""Structured summaries: configuration, prompt, parsing and rendering.

A ``SummaryConfig`` is a frozen snapshot of a SummaryModel taken when a
summary is generated. The snapshot is stored next to the summary, so editing
or deleting the model later never changes what a historical summary says it
was produced with.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import load_json
from app.models.space import Space
from app.models.summary_model import ALL_SECTIONS, SummaryModel, SummarySection, SummaryTone
from app.services.structured import extract_json_object

logger = logging.getLogger(__name__)

# Transcripts longer than this are cut before prompting
MAX_PROMPT_CHARS = 120_000

_DETAIL_INSTRUCTIONS = {
    1: "Be very concise: 3 to 5 points at most.",
    2: "Be complete but concise, keeping only the essential points.",
    3: "Be detailed and cover every important point.",
}

_TONE_INSTRUCTIONS = {
    SummaryTone.PROFESSIONAL: "Professional, factual tone.",
    SummaryTone.FORMAL: "Formal tone, in the style of official minutes.",
    SummaryTone.CASUAL: "Relaxed, accessible tone, like personal notes.",
}

_SECTION_SHAPES = {
    SummarySection.KEY_POINTS: '"keyPoints": ["Key point 1", "Key point 2", ...]',
    SummarySection.DECISIONS: '"decisions": ["Decision 1", "Decision 2", ...]',
    SummarySection.ACTION_ITEMS: '"actionItems": [{"task": "Description", "assignee": "Name or null"}]',
    SummarySection.QUESTIONS: '"questions": ["Open question 1", ...]',
}

_SECTION_TITLES = {
    SummarySection.KEY_POINTS: "Key points",
    SummarySection.DECISIONS: "Decisions",
    SummarySection.ACTION_ITEMS: "Action items",
    SummarySection.QUESTIONS: "Open questions",
}

_LANGUAGE_NAMES = {"fr": "French", "en": "English"}
_SECTION_VALUES = {s.value for s in SummarySection}


class SummaryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model_id: uuid.UUID | None = None
    name: str = "Default"
    sections: tuple[SummarySection, ...] = ALL_SECTIONS
    tone: SummaryTone = SummaryTone.PROFESSIONAL
    detail_level: int = 2
    custom_instructions: str | None = None
    language: str = "fr"

    @classmethod
    def from_model(cls, m: SummaryModel, language: str = "fr") -> SummaryConfig:
        sections = tuple(
            SummarySection(s) for s in load_json(m.sections, []) if s in _SECTION_VALUES
        )
        return cls(
            model_id=m.id,
            name=m.name,
            sections=sections or ALL_SECTIONS,
            tone=m.tone,
            detail_level=m.detail_level,
            custom_instructions=m.custom_instructions,
            language=language,
        )

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


DEFAULT_SUMMARY_CONFIG = SummaryConfig()


async def resolve_summary_config(
    session: AsyncSession,
    space_id: uuid.UUID,
    model_id: uuid.UUID | None = None,
    language: str = "fr",
) -> SummaryConfig:
    """Pick the configuration for a new summary.

    Order: explicit model → the space's configured model → a default model
    owned by the space → a shared default → the built-in default.
    """
    if model_id is not None:
        m = await session.get(SummaryModel, model_id)
        if m is not None:
            return SummaryConfig.from_model(m, language)
        logger.warning("Summary model %s not found, falling back", model_id)

    space = await session.get(Space, space_id)
    if space is not None and space.summary_model_id is not None:
        m = await session.get(SummaryModel, space.summary_model_id)
        if m is not None:
            return SummaryConfig.from_model(m, language)

    stmt = (
        select(SummaryModel)
        .where(SummaryModel.space_id == space_id, SummaryModel.is_default == True)  # noqa: E712
        .order_by(SummaryModel.created_at)
    )
    m = (await session.execute(stmt)).scalars().first()
    if m is not None:
        return SummaryConfig.from_model(m, language)

    stmt = (
        select(SummaryModel)
        .where(
            SummaryModel.space_id.is_(None),  # type: ignore[union-attr]
            SummaryModel.is_shared == True,  # noqa: E712
            SummaryModel.is_default == True,  # noqa: E712
        )
        .order_by(SummaryModel.created_at)
    )
    m = (await session.execute(stmt)).scalars().first()
    if m is not None:
        return SummaryConfig.from_model(m, language)

    return DEFAULT_SUMMARY_CONFIG.model_copy(update={"language": language})


def build_summary_prompt(content: str, title: str, config: SummaryConfig) -> str:
    if len(content) > MAX_PROMPT_CHARS:
        content = content[:MAX_PROMPT_CHARS].rsplit(" ", 1)[0] + " ..."

    shapes = ",\n  ".join(_SECTION_SHAPES[s] for s in config.sections)
    language = _LANGUAGE_NAMES.get(config.language, config.language)
    custom = (
        f"\n**Custom instructions:**\n{config.custom_instructions}\n"
        if config.custom_instructions
        else ""
    )

    return (
        "You are an assistant specialised in analysing meetings and documents.\n\n"
        "Analyse the following content and produce a structured summary.\n\n"
        f"**Title:** {title}\n\n"
        f"**Content:**\n{content}\n\n"
        "**Instructions:**\n"
        f"- Answer in {language}\n"
        f"- Level of detail: {_DETAIL_INSTRUCTIONS.get(config.detail_level, _DETAIL_INSTRUCTIONS[2])}\n"
        f"- Tone: {_TONE_INSTRUCTIONS.get(config.tone, _TONE_INSTRUCTIONS[SummaryTone.PROFESSIONAL])}\n"
        f"- Sections to include: {', '.join(config.sections)}\n"
        f"{custom}\n"
        "**Response format (JSON):**\n"
        "{\n"
        '  "summary": "Overall summary",\n'
        f"  {shapes},\n"
        '  "sentiment": "positive | neutral | negative | mixed",\n'
        '  "participants": ["Name 1", "Name 2", ...]\n'
        "}\n\n"
        "Reply ONLY with the JSON, without any text before or after."
    )


@dataclass
class StructuredSummary:
    summary: str
    sections: dict[SummarySection, list] = field(default_factory=dict)
    sentiment: str | None = None
    participants: list[str] = field(default_factory=list)


def parse_summary(text: str | None, config: SummaryConfig) -> StructuredSummary | None:
    """Parse a model reply; None when it is not a usable summary."""
    extracted = extract_json_object(text)
    if not extracted.ok:
        logger.warning("Summary reply rejected: %s", extracted.error)
        return None
    data = extracted.data

    overview = data.get("summary")
    if overview is not None and not isinstance(overview, str):
        return None

    sections: dict[SummarySection, list] = {}
    for section in config.sections:
        items = data.get(section.value)
        if items is None:
            continue
        if not isinstance(items, list):
            logger.warning("Summary section %s is not a list", section.value)
            return None
        sections[section] = items

    if not (overview or "").strip() and not any(sections.values()):
        return None

    sentiment = data.get("sentiment")
    participants = data.get("participants")
    return StructuredSummary(
        summary=(overview or "").strip(),
        sections=sections,
        sentiment=sentiment if isinstance(sentiment, str) and sentiment.strip() else None,
        participants=[str(p) for p in participants if p] if isinstance(participants, list) else [],
    )


def _render_item(section: SummarySection, item: Any) -> str:
    if section is SummarySection.ACTION_ITEMS and isinstance(item, dict):
        task = str(item.get("task") or "").strip()
        assignee = item.get("assignee")
        return f"- {task} ({assignee})" if assignee else f"- {task}"
    return f"- {item}"


def render_summary(s: StructuredSummary) -> str:
    """Markdown rendering stored in ``Source.summary``."""
    parts: list[str] = []
    if s.summary:
        parts.append(s.summary)
    for section, items in s.sections.items():
        if not items:
            continue
        lines = [f"## {_SECTION_TITLES[section]}"]
        lines.extend(_render_item(section, item) for item in items)
        parts.append("\n".join(lines))
    if s.participants:
        parts.append("## Participants\n" + ", ".join(s.participants))
    if s.sentiment:
        parts.append(f"## Sentiment\n{s.sentiment}")
    return "\n\n".join(parts)
