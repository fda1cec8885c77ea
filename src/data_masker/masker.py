"""DataMasker — the main API.  Rules first, then dictionaries.

Usage:
    from data_masker import DataMasker

    masker = DataMasker()                  # default rules, own vault
    result = masker.mask("s1", "The cost is ¥1,234,567")
    print(result.text)                     # "The cost is [AMOUNT_9f2c01ab]"

    reply = "Spend stayed at [AMOUNT_9f2c01ab]."
    print(masker.unmask("s1", reply).text) # "Spend stayed at ¥1,234,567."

    masker.clear_session("s1")
"""

from __future__ import annotations
import logging
import re
import secrets
import time
from collections import Counter
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Callable, Iterable

from .patterns import DEFAULT_TOKEN_PREFIX, Dictionary, Rule, Segment, default_rules, scan_segments
from .tokens import TokenGenerator
from .types import MaskedText, SessionStats, UnmaskedText
from .vault import SessionVault

logger = logging.getLogger(__name__)

# Anything shaped like a token or a fixed literal: "[" ... "]" with no nesting
_BRACKETED = re.compile(r"\[[^\[\]]+\]")


def new_session_id() -> str:
    """Session id used when a caller does not supply one."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class DataMasker:
    """Pattern/dictionary tokenizer with per-session reversible mappings.

    Irreversible rules replace matches with a fixed literal and leave no
    trace in the vault.  Reversible rules and dictionaries substitute
    fresh tokens and remember the original so ``unmask`` can restore it.
    """

    def __init__(
        self,
        rules: Iterable[Rule] | None = None,
        dictionaries: Iterable[Dictionary] = (),
        *,
        vault: SessionVault | None = None,
        token_generator: TokenGenerator | None = None,
    ) -> None:
        self.rules: tuple[Rule, ...] = tuple(default_rules() if rules is None else rules)
        self.dictionaries: tuple[Dictionary, ...] = tuple(dictionaries)
        # An empty vault is falsy (__len__), so test for None explicitly
        self.vault = vault if vault is not None else SessionVault(token_generator)
        self._literals = frozenset(r.fixed_replacement for r in self.rules if not r.reversible)

    def max_token_len(self) -> int:
        """Length of the longest token this masker can issue."""
        prefixes = [r.prefix for r in self.rules if r.reversible]
        prefixes += [d.token_prefix for d in self.dictionaries]
        longest = max((len(p) for p in prefixes), default=len(DEFAULT_TOKEN_PREFIX))
        return longest + 2 * self.vault.token_bytes + 1

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def mask(self, session_id: str, text: str) -> MaskedText:
        """Mask ``text``, recording reversible substitutions under ``session_id``.

        Tokens this session already issued, and the fixed literals of
        irreversible rules, are left alone, so masked text can be masked
        again.  If a token cannot be issued, every token issued by this
        call is removed from the vault before the error propagates.
        """
        self.vault.get_or_create(session_id)
        result = MaskedText(text=text)
        if not text:
            return result

        segments = self._initial_segments(session_id, text)
        issued: list[str] = []
        try:
            # --- Rules, in declared order ---
            for rule in self.rules:
                if not rule.enabled:
                    continue
                try:
                    found = scan_segments(rule.pattern, segments)
                except RuntimeError:
                    # Pathological backtracking / recursion: skip this rule only
                    logger.error(
                        "Rule evaluation failed, skipping rule=%s session=%s",
                        rule.name, session_id, exc_info=True,
                    )
                    result.failed_rules.append(rule.name)
                    continue
                replace = self._rule_replacer(session_id, rule, issued)
                segments, hits = _substitute(segments, found, replace)
                result.mask_count += hits

            # --- Dictionaries, after every rule ---
            for dictionary in self.dictionaries:
                replace = self._dictionary_replacer(session_id, dictionary, issued)
                for pattern in dictionary.patterns:
                    found = scan_segments(pattern, segments)
                    segments, hits = _substitute(segments, found, replace)
                    result.mask_count += hits
        except Exception:
            removed = self.vault.discard(session_id, issued)
            logger.warning("Masking aborted session=%s rolled_back=%d", session_id, removed)
            raise

        result.text = "".join(chunk for chunk, _ in segments)
        logger.debug("Data masked session=%s count=%d", session_id, result.mask_count)
        return result

    def unmask(self, session_id: str, text: str) -> UnmaskedText:
        """Restore every token of this session found in ``text``."""
        entries = self.vault.lookup_all(session_id)
        if entries is None:
            logger.warning("Session mappings not found session=%s", session_id)
            return UnmaskedText(text=text, unmask_count=0, session_found=False)

        result = text
        count = 0
        # Newest first: an original may itself contain an older token
        for entry in reversed(entries):
            # Plain str operations: tokens are never read as patterns
            occurrences = result.count(entry.token)
            if occurrences:
                result = result.replace(entry.token, entry.original)
                count += occurrences

        logger.debug("Data unmasked session=%s count=%d", session_id, count)
        return UnmaskedText(text=result, unmask_count=count)

    def _initial_segments(self, session_id: str, text: str) -> list[Segment]:
        """Split ``text`` so earlier replacements start out protected."""
        if "[" not in text:
            return [(text, False)]
        segments: list[Segment] = []
        pos = 0
        for m in _BRACKETED.finditer(text):
            span = m.group()
            if span not in self._literals and not self.vault.has_token(session_id, span):
                continue
            if m.start() > pos:
                segments.append((text[pos:m.start()], False))
            segments.append((span, True))
            pos = m.end()
        if pos < len(text):
            segments.append((text[pos:], False))
        return segments

    # ------------------------------------------------------------------
    # Structures
    # ------------------------------------------------------------------

    def mask_value(self, session_id: str | None, value: Any) -> Any:
        """Recursively mask every leaf of a nested value.

        Strings are masked; numbers are masked through their string form
        and come back as a string only if something was replaced; lists,
        tuples, sets and frozensets keep their type; bools, None and
        unknown types pass through.  Dict keys are never masked.
        """
        if session_id is None:
            session_id = new_session_id()
            logger.debug("Generated session id %s for structural masking", session_id)
        return self._mask_value(session_id, value)

    def _mask_value(self, session_id: str, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask(session_id, value).text
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float, Decimal)):
            try:
                as_text = str(value)
            except ValueError:
                # int above the interpreter's str conversion digit limit
                logger.warning("Number too large to mask, passed through session=%s", session_id)
                return value
            masked = self.mask(session_id, as_text).text
            return masked if masked != as_text else value
        if isinstance(value, Mapping):
            return {key: self._mask_value(session_id, item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            items = [self._mask_value(session_id, item) for item in value]
            return items if isinstance(value, list) else tuple(items)
        if isinstance(value, (set, frozenset)):
            # Equal masked elements collapse into one
            items = [self._mask_value(session_id, item) for item in value]
            return frozenset(items) if isinstance(value, frozenset) else set(items)
        return value

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def clear_session(self, session_id: str) -> None:
        existed = self.vault.clear(session_id)
        logger.debug("Session mappings cleared session=%s existed=%s", session_id, existed)

    def get_stats(self, session_id: str) -> SessionStats:
        """Mapping counts by category and by source for one session."""
        entries = self.vault.lookup_all(session_id) or []
        return SessionStats(
            total=len(entries),
            by_category=dict(Counter(e.category for e in entries)),
            by_source=dict(Counter(e.source for e in entries)),
        )

    # ------------------------------------------------------------------
    # Replacement callbacks
    # ------------------------------------------------------------------

    def _rule_replacer(self, session_id: str, rule: Rule, issued: list[str]) -> Callable[[str], str]:
        if not rule.reversible:
            literal = rule.fixed_replacement
            return lambda original: literal

        def replace(original: str) -> str:
            entry = self.vault.issue(session_id, rule.prefix, original, rule.category, rule.name)
            issued.append(entry.token)
            return entry.token

        return replace

    def _dictionary_replacer(
        self, session_id: str, dictionary: Dictionary, issued: list[str],
    ) -> Callable[[str], str]:
        def replace(original: str) -> str:
            entry = self.vault.issue(
                session_id, dictionary.token_prefix, original,
                dictionary.category, dictionary.source,
            )
            issued.append(entry.token)
            return entry.token

        return replace


def _substitute(
    segments: list[Segment],
    found: list[list],
    replace: Callable[[str], str],
) -> tuple[list[Segment], int]:
    """Splice replacements into segments; replacements become protected."""
    out: list[Segment] = []
    hits = 0
    for (chunk, protected), matches in zip(segments, found):
        if not matches:
            out.append((chunk, protected))
            continue
        pos = 0
        for m in matches:
            if m.start() > pos:
                out.append((chunk[pos:m.start()], False))
            out.append((replace(m.group()), True))
            hits += 1
            pos = m.end()
        if pos < len(chunk):
            out.append((chunk[pos:], False))
    return out, hits
