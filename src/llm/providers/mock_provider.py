from __future__ import annotations
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from llm.providers.base import LLMProvider

_NOW_RE = re.compile(r"The current date is (\S+?)\.(?:\s|$)")
_TZ_RE = re.compile(r"The user's timezone is (\S+?)\.(?:\s|$)")
_TIME_RE = re.compile(r"\bat (\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.IGNORECASE)

_MEETING_WORDS = ("meeting", "meet with", "schedule", "call with", "appointment", "sync")
_WORK_WORDS = ("deadline", "report", "project", "submit", "presentation", "invoice")
_TASK_WORDS = ("buy", "pick up", "remind me", "groceries", "clean", "pay ", "call ")
_NOTION_WORDS = ("notion", "workspace", "database", "page")
_CALENDAR_WORDS = ("calendar", "meeting", "schedule", "appointment")


class MockProvider(LLMProvider):
    name = "mock"

    def generate(self, *, system: str, user: str, model: str | None = None) -> str:
        """
        Returns a deterministic JSON answer that follows the extraction prompt contract.
        Reads the current instant and the user's timezone back out of the system prompt.
        """
        now = _read_now(system)
        tz = _read_timezone(system)
        text = user.strip()
        lower = text.lower()

        category = "General"
        if any(w in lower for w in _MEETING_WORDS):
            category = "Meeting"
        elif any(w in lower for w in _WORK_WORDS):
            category = "Work"
        elif any(w in lower for w in _TASK_WORDS):
            category = "Task"

        priority = "medium"
        if "urgent" in lower or "asap" in lower:
            priority = "urgent"
        elif "important" in lower:
            priority = "high"
        elif "someday" in lower or "whenever" in lower:
            priority = "low"

        due = _resolve_due(lower, now, tz)

        integrations = []
        if due is not None or any(w in lower for w in _CALENDAR_WORDS):
            integrations.append("google_calendar")
        if any(w in lower for w in _NOTION_WORDS):
            integrations.append("notion")

        title = f"{category}: {text.rstrip('.')[:60]}"
        return json.dumps({
            "title": title,
            "description": text,
            "priority": priority,
            "due_date": due.strftime("%Y-%m-%dT%H:%M:%SZ") if due else None,
            "integrations": integrations,
            "category": category,
            "ai_response": f'Got it! I created "{title}" for you.',
        })


def _read_now(system: str) -> datetime:
    m = _NOW_RE.search(system)
    if m:
        try:
            parsed = datetime.fromisoformat(m.group(1).replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _read_timezone(system: str):
    m = _TZ_RE.search(system)
    if m:
        try:
            return ZoneInfo(m.group(1))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return timezone.utc


def _resolve_due(lower: str, now: datetime, tz) -> Optional[datetime]:
    local_now = now.astimezone(tz)

    day_offset = None
    if "tomorrow" in lower:
        day_offset = 1
    elif "today" in lower or "tonight" in lower:
        day_offset = 0

    m = _TIME_RE.search(lower)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        meridiem = (m.group(3) or "").lower()
        if meridiem == "pm" and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        if hour > 23 or minute > 59:
            m = None

    if day_offset is None and not m:
        return None

    # A bare date keeps the current time of day, a bare time means today.
    local = local_now + timedelta(days=day_offset or 0)
    if m:
        local = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    else:
        local = local.replace(microsecond=0)
    return local.astimezone(timezone.utc)
