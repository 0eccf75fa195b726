"""
Schema normalization for raw extraction output.

`normalize` is total: whatever the model returned, the caller gets back a
complete `ExtractedTask`. Fields are repaired one by one, so a bad date does
not cost the task its title and a bad priority does not cost it its date.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from talk2task.errors import ParseError
from talk2task.models import Category, ExtractedTask, Platform, Priority

logger = logging.getLogger(__name__)

FALLBACK_TITLE_CHARS = 50
DEFAULT_AI_RESPONSE = "Task has been created for you."
UNTITLED = "Untitled task"

_VALID_PRIORITIES = {p.value for p in Priority}
_VALID_CATEGORIES = {c.value for c in Category}
_VALID_HINTS = {p.value for p in Platform}
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_datetime_adapter = TypeAdapter(datetime)


def fallback_title(original_text: str) -> str:
    title = (original_text or "").strip()[:FALLBACK_TITLE_CHARS].strip()
    return title or UNTITLED


def default_description(original_text: str) -> str:
    return f'Task created from: "{(original_text or "").strip()}"'


def fallback_task(original_text: str, raw: Optional[str] = None) -> ExtractedTask:
    """Deterministic record used when the model output cannot be used at all."""
    return ExtractedTask(
        title=fallback_title(original_text),
        description=default_description(original_text),
        priority=Priority.MEDIUM,
        due_date=None,
        integrations=[],
        category=Category.GENERAL,
        ai_response=DEFAULT_AI_RESPONSE,
        ai_context=raw,
        fallback=True,
    )


def parse_raw(raw: str) -> dict:
    if not isinstance(raw, str):
        raise ParseError("model output is not text")
    text = raw.strip()
    m = _CODE_FENCE_RE.match(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        raise ParseError("model output is not valid JSON", details=str(e)) from e
    if not isinstance(data, dict):
        raise ParseError("model output is not a JSON object")
    return data


def normalize_priority(value: Any) -> Priority:
    if isinstance(value, str) and value in _VALID_PRIORITIES:
        return Priority(value)
    return Priority.MEDIUM


def normalize_category(value: Any) -> Category:
    if isinstance(value, str) and value in _VALID_CATEGORIES:
        return Category(value)
    return Category.GENERAL


def normalize_due_date(value: Any) -> Optional[datetime]:
    """Return an aware UTC datetime, or None when the value is not a usable instant."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = _datetime_adapter.validate_python(value.strip())
    except PydanticValidationError:
        return None
    try:
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # e.g. 0001-01-01T00:00:00+01:00 has no UTC representation
        return None


def normalize_integrations(value: Any) -> List[Platform]:
    if not isinstance(value, list):
        return []
    out: List[Platform] = []
    for item in value:
        if isinstance(item, str) and item in _VALID_HINTS:
            hint = Platform(item)
            if hint not in out:
                out.append(hint)
    return out


def normalize_title(value: Any, category: Category, original_text: str) -> str:
    if not isinstance(value, str) or not value.strip():
        return fallback_title(original_text)
    title = value.strip()
    if not any(title.lower().startswith(f"{c.lower()}:") for c in _VALID_CATEGORIES):
        title = f"{category.value}: {title}"
    return title


def _non_empty_str(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def normalize(raw: str, original_text: str) -> ExtractedTask:
    try:
        data = parse_raw(raw)
    except ParseError as e:
        logger.warning(f"Falling back to local task synthesis: {e.message}")
        return fallback_task(original_text, raw=raw if isinstance(raw, str) else None)

    try:
        category = normalize_category(data.get("category"))
        return ExtractedTask(
            title=normalize_title(data.get("title"), category, original_text),
            description=_non_empty_str(data.get("description"), default_description(original_text)),
            priority=normalize_priority(data.get("priority")),
            due_date=normalize_due_date(data.get("due_date")),
            integrations=normalize_integrations(data.get("integrations")),
            category=category,
            ai_response=_non_empty_str(data.get("ai_response"), DEFAULT_AI_RESPONSE),
            ai_context=json.dumps(data, ensure_ascii=False, default=str),
        )
    except Exception:
        logger.exception("Unexpected error while normalizing extraction output")
        return fallback_task(original_text, raw=raw)
