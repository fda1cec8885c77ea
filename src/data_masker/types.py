"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MappingEntry:
    """A reversible substitution remembered by a session."""
    token: str             # e.g. "[AMOUNT_9f2c01ab]"
    original: str
    category: str          # e.g. "financial", "business"
    source: str            # rule name or "dictionary:<name>"
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class MaskedText:
    """Result of masking a string."""
    text: str                                       # masked text with tokens
    mask_count: int = 0
    failed_rules: list[str] = field(default_factory=list)

    def __iter__(self):
        yield self.text
        yield self.mask_count


@dataclass(slots=True)
class UnmaskedText:
    """Result of unmasking a string."""
    text: str
    unmask_count: int = 0
    session_found: bool = True

    def __iter__(self):
        yield self.text
        yield self.unmask_count


@dataclass(slots=True)
class SessionStats:
    """Mapping counts for one session."""
    total: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_category": dict(self.by_category),
            "by_source": dict(self.by_source),
        }
