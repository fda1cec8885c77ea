"""Rules and dictionaries — what counts as sensitive.

Rules are regexes compiled once at load time and applied in declared
order.  Dictionaries are literal term lists (client names, competitor
names) matched case-insensitively after all rules have run.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Iterable

DEFAULT_REPLACEMENT = "[MASKED]"
DEFAULT_TOKEN_PREFIX = "[MASKED_"


@dataclass(frozen=True, slots=True)
class Rule:
    """A single pattern rule.

    Irreversible rules substitute ``replacement`` for every match.
    Reversible rules issue a fresh token starting with ``token_prefix``.
    """
    name: str
    category: str
    pattern: re.Pattern
    reversible: bool = True
    replacement: str | None = None      # irreversible only
    token_prefix: str | None = None     # reversible only
    enabled: bool = True

    @classmethod
    def compile(
        cls,
        name: str,
        category: str,
        pattern: str,
        *,
        ignore_case: bool = False,
        **kwargs,
    ) -> "Rule":
        flags = re.IGNORECASE if ignore_case else 0
        return cls(name=name, category=category, pattern=re.compile(pattern, flags), **kwargs)

    @property
    def fixed_replacement(self) -> str:
        return self.replacement or DEFAULT_REPLACEMENT

    @property
    def prefix(self) -> str:
        return self.token_prefix or DEFAULT_TOKEN_PREFIX


@dataclass(frozen=True, slots=True)
class Dictionary:
    """A named list of literal terms, always reversible."""
    name: str
    terms: tuple[str, ...]
    category: str
    token_prefix: str
    patterns: tuple[re.Pattern, ...] = field(default=(), repr=False, compare=False)

    @classmethod
    def from_terms(
        cls,
        name: str,
        terms: Iterable[str],
        category: str,
        token_prefix: str,
    ) -> "Dictionary":
        """Build a dictionary, dropping blanks and case-insensitive duplicates."""
        seen: set[str] = set()
        kept: list[str] = []
        for term in terms:
            term = term.strip()
            if not term or term.casefold() in seen:
                continue
            seen.add(term.casefold())
            kept.append(term)
        return cls(
            name=name,
            terms=tuple(kept),
            category=category,
            token_prefix=token_prefix,
            patterns=tuple(re.compile(re.escape(t), re.IGNORECASE) for t in kept),
        )

    @property
    def source(self) -> str:
        return f"dictionary:{self.name}"


def default_rules() -> list[Rule]:
    """The built-in rule set used when no rules are configured."""
    return [
        # Yen amounts: ¥1,234,567 / ¥500.00
        Rule.compile(
            "currency_jpy", "financial", r"¥[\d,]+(?:\.\d{2})?",
            token_prefix="[AMOUNT_",
        ),
        Rule.compile(
            "currency_usd", "financial", r"\$[\d,]+(?:\.\d{2})?",
            token_prefix="[AMOUNT_USD_",
        ),
        Rule.compile(
            "email", "pii", r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}",
            reversible=False, replacement="[EMAIL_MASKED]",
        ),
        # Japanese phone numbers, domestic (0x) or international (+81)
        Rule.compile(
            "phone_jp", "pii", r"(?:\+?81|0)\d{1,4}[\-\s]?\d{1,4}[\-\s]?\d{4}",
            reversible=False, replacement="[PHONE_MASKED]",
        ),
        Rule.compile(
            "campaign_name", "identifier",
            r"campaign[_\-]?(?:name)?[:\s]*[\"']?([a-zA-Z0-9_\-]+)[\"']?",
            ignore_case=True, token_prefix="[CAMPAIGN_",
        ),
        Rule.compile(
            "ip_address", "pii", r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}",
            reversible=False, replacement="[IP_MASKED]",
        ),
    ]


# A chunk of text plus whether it is protected: a replacement made earlier in
# the pass or a token the session already issued (never rescanned).
Segment = tuple[str, bool]


def scan_segments(pattern: re.Pattern, segments: list[Segment]) -> list[list[re.Match]]:
    """Find non-empty matches of ``pattern`` in every unprotected segment.

    Returns one match list per segment, empty for protected ones.  Nothing
    is substituted here, so a failure part-way leaves the text untouched.
    """
    found: list[list[re.Match]] = []
    for chunk, protected in segments:
        if protected or not chunk:
            found.append([])
            continue
        found.append([m for m in pattern.finditer(chunk) if m.end() > m.start()])
    return found
