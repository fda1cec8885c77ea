"""Token generation.

Token format: ``<prefix><hex>]``, e.g. ``[AMOUNT_9f2c01ab]``.  The prefix
opens the bracket, the generator closes it.  Hex suffixes keep tokens
free of regex metacharacters beyond the brackets themselves.
"""

from __future__ import annotations
import secrets
from typing import Callable

MIN_TOKEN_BYTES = 4


class TokenGenerator:
    """Random token source.  Holds no state besides the byte source."""

    __slots__ = ("_nbytes", "_source")

    def __init__(
        self,
        nbytes: int = MIN_TOKEN_BYTES,
        source: Callable[[int], bytes] | None = None,
    ) -> None:
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"token suffix needs at least {MIN_TOKEN_BYTES} bytes, got {nbytes}")
        self._nbytes = nbytes
        self._source = source or secrets.token_bytes

    @property
    def nbytes(self) -> int:
        return self._nbytes

    def next_token(self, prefix: str) -> str:
        return f"{prefix}{self._source(self._nbytes).hex()}]"
