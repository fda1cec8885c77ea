"""Middleware between an analysis agent and the LLM provider.

Usage as a function wrapper:

    masker = DataMasker()
    mw = MaskingMiddleware(masker, session_id="analysis-42")

    # Tool results (BigQuery / GA4 rows) before they enter the prompt
    safe_rows = mw.mask_rows(rows)

    # Before sending to provider
    safe_messages = mw.pre_send(messages)

    # After receiving response
    report = mw.post_receive(response_text)

    # When the analysis is over
    mw.close()
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from .masker import DataMasker, new_session_id


@dataclass
class MaskingMiddleware:
    """Binds one masker to one session for the length of a conversation."""

    masker: DataMasker
    session_id: str = field(default_factory=new_session_id)

    @classmethod
    def create(cls, *, masker: DataMasker | None = None, session_id: str | None = None) -> "MaskingMiddleware":
        """Factory — creates a middleware with a fresh session id if none given."""
        if masker is None:
            masker = DataMasker()
        return cls(masker=masker, session_id=session_id or new_session_id())

    def pre_send(self, messages: list[dict], *, content_key: str = "content") -> list[dict]:
        """Mask outbound chat messages.  Does NOT mutate the originals."""
        out: list[dict] = []
        for msg in messages:
            content = msg.get(content_key)
            if isinstance(content, str) and content:
                out.append({**msg, content_key: self.masker.mask(self.session_id, content).text})
            else:
                out.append(msg)
        return out

    def post_receive(self, text: str) -> str:
        """Restore tokens in the model's response."""
        return self.masker.unmask(self.session_id, text).text

    def mask_text(self, text: str) -> str:
        """Mask a single string (convenience)."""
        return self.masker.mask(self.session_id, text).text

    def unmask_text(self, text: str) -> str:
        """Alias for post_receive."""
        return self.post_receive(text)

    def mask_rows(self, rows: list[Any]) -> list[Any]:
        """Mask query result rows, keeping their shape."""
        return [self.masker.mask_value(self.session_id, row) for row in rows]

    def close(self) -> None:
        """Forget every mapping of this session."""
        self.masker.clear_session(self.session_id)

    @property
    def stats(self) -> dict:
        return self.masker.get_stats(self.session_id).to_dict()
