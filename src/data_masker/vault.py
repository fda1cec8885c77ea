"""SessionVault — per-session token → original mappings, in memory only.

Design goals:
  - Isolated: every session owns its own shard; tokens never resolve across sessions
  - Concurrent: one lock per session, so unrelated sessions never block each other
  - Collision-checked: a token is only committed if the session has not issued it yet
"""

from __future__ import annotations
import threading

from .errors import TokenCollisionError, TokenExhaustedError
from .tokens import TokenGenerator
from .types import MappingEntry

DEFAULT_MAX_ATTEMPTS = 8


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, MappingEntry] = {}    # insertion-ordered


class SessionVault:
    """In-memory mapping store keyed by session id."""

    __slots__ = ("_shards", "_registry_lock", "_generator", "_max_attempts")

    def __init__(
        self,
        generator: TokenGenerator | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._shards: dict[str, _Shard] = {}
        # Guards only shard creation/removal, never held while masking
        self._registry_lock = threading.Lock()
        self._generator = generator if generator is not None else TokenGenerator()
        self._max_attempts = max(1, max_attempts)

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: str) -> bool:
        """Make sure the session exists.  Returns True if it was just created."""
        with self._registry_lock:
            if session_id in self._shards:
                return False
            self._shards[session_id] = _Shard()
            return True

    def insert(self, session_id: str, entry: MappingEntry) -> None:
        """Add an entry.  Existing tokens are never overwritten."""
        shard = self._shard(session_id)
        with shard.lock:
            if entry.token in shard.entries:
                raise TokenCollisionError(session_id, entry.token)
            shard.entries[entry.token] = entry

    def issue(
        self,
        session_id: str,
        prefix: str,
        original: str,
        category: str,
        source: str,
    ) -> MappingEntry:
        """Generate a token unused in this session and record the mapping."""
        shard = self._shard(session_id)
        with shard.lock:
            for _ in range(self._max_attempts):
                token = self._generator.next_token(prefix)
                if token in shard.entries:
                    continue
                entry = MappingEntry(token=token, original=original, category=category, source=source)
                shard.entries[token] = entry
                return entry
        raise TokenExhaustedError(session_id, prefix, self._max_attempts)

    def discard(self, session_id: str, tokens: list[str]) -> int:
        """Remove specific tokens from a session.  Returns how many were present."""
        shard = self._shards.get(session_id)
        if shard is None:
            return 0
        removed = 0
        with shard.lock:
            for token in tokens:
                if shard.entries.pop(token, None) is not None:
                    removed += 1
        return removed

    def has_token(self, session_id: str, token: str) -> bool:
        shard = self._shards.get(session_id)
        if shard is None:
            return False
        with shard.lock:
            return token in shard.entries

    def lookup_all(self, session_id: str) -> list[MappingEntry] | None:
        """Snapshot of the session's entries in insertion order, None if unknown."""
        shard = self._shards.get(session_id)
        if shard is None:
            return None
        with shard.lock:
            return list(shard.entries.values())

    def clear(self, session_id: str) -> bool:
        """Drop the whole session.  Returns False if it did not exist."""
        with self._registry_lock:
            shard = self._shards.pop(session_id, None)
        if shard is None:
            return False
        # Wait out any in-flight insert before emptying the detached shard
        with shard.lock:
            shard.entries.clear()
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def token_bytes(self) -> int:
        """Random bytes per token, as hex they are twice as many characters."""
        return self._generator.nbytes

    def has_session(self, session_id: str) -> bool:
        return session_id in self._shards

    def sessions(self) -> list[str]:
        with self._registry_lock:
            return list(self._shards)

    def size(self, session_id: str) -> int:
        entries = self.lookup_all(session_id)
        return len(entries) if entries else 0

    def dump(self, session_id: str) -> dict[str, str]:
        """Return a copy of the token→original mapping (for debugging)."""
        return {e.token: e.original for e in self.lookup_all(session_id) or ()}

    def __len__(self) -> int:
        return len(self._shards)

    def _shard(self, session_id: str) -> _Shard:
        shard = self._shards.get(session_id)
        if shard is not None:
            return shard
        with self._registry_lock:
            return self._shards.setdefault(session_id, _Shard())
