from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.services.llm.types import NarrativeInput

PROMPT_VERSION = "p1"

NARRATIVE_SYS = (
    "You are a personal stylist. Recommend one outfit using only the listed wardrobe items. "
    "Answer in three short lines: OUTFIT: ..., REASONING: ..., STYLING_TIPS: ... "
    "Mention the weather when an advisory is given."
)

DEFAULT_QUERY = "stylish outfit"

# Items listed per category in the prompt.
PROMPT_ITEMS_PER_CATEGORY = 3


def build_query_text(
    query: Optional[str],
    occasion: Optional[str] = None,
    weather: Optional[str] = None,
    season: Optional[str] = None,
    formality: Optional[str] = None,
) -> str:
    parts: List[str] = []
    if query and query.strip():
        parts.append(query.strip())
    if occasion:
        parts.append(f"for {occasion}")
    if weather:
        parts.append(f"in {weather} weather")
    if season:
        parts.append(f"for {season}")
    if formality:
        parts.append(f"with {formality} style")
    return " ".join(parts) or DEFAULT_QUERY


def build_narrative_prompt(payload: NarrativeInput) -> List[Dict[str, Any]]:
    ctx = payload.context
    lines = [
        "Context:",
        f"- Occasion: {ctx.get('occasion') or 'casual'}",
        f"- Weather: {ctx.get('weather') or 'normal'}",
        f"- Season: {ctx.get('season') or 'all-season'}",
        f"- Formality: {ctx.get('formality') or 'casual'}",
        f"- Request: {ctx.get('query') or 'none'}",
    ]
    if payload.advisory:
        lines.append(f"- Advisory: {payload.advisory.get('advice', '')}")
    lines.append("")
    lines.append("Available Items by Category:")
    for category, descs in payload.items_by_category.items():
        lines.append(f"{category}: {', '.join(descs[:PROMPT_ITEMS_PER_CATEGORY])}")
    return [
        {"role": "system", "content": NARRATIVE_SYS},
        {"role": "user", "content": "\n".join(lines)},
    ]
