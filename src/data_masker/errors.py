"""Exceptions raised by data-masker."""

from __future__ import annotations


class MaskingError(Exception):
    """Base class for all masking failures."""


class MaskingConfigError(MaskingError, ValueError):
    """Rule, dictionary or policy definitions are invalid."""


class TokenCollisionError(MaskingError):
    """A token is already registered in the session."""

    def __init__(self, session_id: str, token: str) -> None:
        super().__init__(f"token {token!r} already exists in session {session_id!r}")
        self.session_id = session_id
        self.token = token


class TokenExhaustedError(MaskingError):
    """No unused token could be generated within the retry budget."""

    def __init__(self, session_id: str, prefix: str, attempts: int) -> None:
        super().__init__(
            f"could not issue a unique {prefix!r} token for session "
            f"{session_id!r} after {attempts} attempts"
        )
        self.session_id = session_id
        self.prefix = prefix
        self.attempts = attempts
