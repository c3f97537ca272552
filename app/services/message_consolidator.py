"""
message_consolidator.py — Collapse near-duplicate assistant replies

The parts-search workflow sometimes answers one question several times
in parallel. Replies produced within the window that look alike are
shown as one message with alternates.

Business Rules:
- Only ASSISTANT messages are grouped; USER and SYSTEM pass through
- Candidates are compared to the group's primary (first message), and
  must be within the window: |Δt| < window (strict)
- Duplicate when ANY of: identical content; both match
  "I found N parts matching your search for"; both carry
  context.searchResults
- Each message joins at most one group; order of primaries is preserved
- Consolidating an already consolidated list returns it unchanged

Called by: services/chat_service.py
Depends on: config
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..config import settings
from ..models.enums import MessageRole

PARTS_FOUND_PATTERN = re.compile(r"I found \d+ parts matching your search for")


@dataclass(frozen=True)
class ConsolidatedMessage:
    primary: Any
    alternates: tuple = ()

    @property
    def id(self):
        return self.primary.id

    @property
    def duplicate_count(self) -> int:
        return 1 + len(self.alternates)


def _has_search_results(msg) -> bool:
    context = msg.context or {}
    return bool(context.get("searchResults"))


def is_duplicate(a, b) -> bool:
    """Content test only; the caller checks role and time window."""
    if (a.content or "") == (b.content or ""):
        return True
    if PARTS_FOUND_PATTERN.search(a.content or "") and PARTS_FOUND_PATTERN.search(b.content or ""):
        return True
    return _has_search_results(a) and _has_search_results(b)


def _wrap(entry) -> ConsolidatedMessage:
    return entry if isinstance(entry, ConsolidatedMessage) else ConsolidatedMessage(entry)


def consolidate(messages: list, window: timedelta | None = None) -> list[ConsolidatedMessage]:
    """Group near-duplicate assistant messages. Input is chronological."""
    window = window if window is not None else timedelta(seconds=settings.consolidation_window_seconds)
    entries = [_wrap(m) for m in messages]
    consumed: set[int] = set()
    result: list[ConsolidatedMessage] = []

    for i, entry in enumerate(entries):
        if i in consumed:
            continue
        consumed.add(i)
        primary = entry.primary
        if primary.role != MessageRole.ASSISTANT:
            result.append(entry)
            continue

        alternates = list(entry.alternates)
        for j in range(i + 1, len(entries)):
            if j in consumed:
                continue
            candidate = entries[j].primary
            if candidate.role != MessageRole.ASSISTANT:
                continue
            if abs(candidate.created_at - primary.created_at) >= window:
                continue
            if is_duplicate(primary, candidate):
                alternates.append(candidate)
                alternates.extend(entries[j].alternates)
                consumed.add(j)

        result.append(ConsolidatedMessage(primary, tuple(alternates)))
    return result
