"""Streaming unmasker — buffers chunks and restores tokens as they complete.

For SSE/streaming responses where tokens arrive as fragments:
    [AMO  →  [AMOUNT_9f  →  [AMOUNT_9f2c01ab]

Every token opens with "[" and closes with "]", so text outside a
bracket is emitted immediately and only a possible token is held back.

Usage:
    unmasker = StreamingUnmasker(masker, session_id)
    for chunk in sse_stream:
        ready_text = unmasker.feed(chunk)
        if ready_text:
            yield ready_text
    # Flush any remaining buffer
    yield unmasker.flush()
"""

from __future__ import annotations

from .masker import DataMasker


class StreamingUnmasker:
    """Buffers streaming chunks and unmasks complete tokens."""

    __slots__ = ("_masker", "_session_id", "_buffer", "_max_token_len", "unmask_count")

    def __init__(self, masker: DataMasker, session_id: str, *, max_token_len: int | None = None) -> None:
        self._masker = masker
        self._session_id = session_id
        self._buffer = ""
        # A bracket run longer than this cannot be a token
        self._max_token_len = max_token_len if max_token_len is not None else masker.max_token_len()
        self.unmask_count = 0

    def feed(self, chunk: str) -> str:
        """Feed a chunk, return any text ready to emit."""
        self._buffer += chunk
        return self._drain()

    def flush(self) -> str:
        """Flush remaining buffer (call at end of stream)."""
        out = self._buffer
        self._buffer = ""
        return self._unmask(out) if "[" in out else out

    def _unmask(self, text: str) -> str:
        result = self._masker.unmask(self._session_id, text)
        self.unmask_count += result.unmask_count
        return result.text

    def _drain(self) -> str:
        """Extract and unmask complete portions of the buffer."""
        out_parts: list[str] = []

        while self._buffer:
            idx = self._buffer.find("[")

            if idx == -1:
                # No bracket, so no token
                out_parts.append(self._buffer)
                self._buffer = ""
                break

            if idx > 0:
                out_parts.append(self._buffer[:idx])
                self._buffer = self._buffer[idx:]

            # Buffer starts with "["; a closing "]" completes a candidate
            close_idx = self._buffer.find("]")
            if close_idx != -1:
                out_parts.append(self._unmask(self._buffer[:close_idx + 1]))
                self._buffer = self._buffer[close_idx + 1:]
                continue

            if len(self._buffer) > self._max_token_len:
                # Too long to be a token, emit the "["
                out_parts.append("[")
                self._buffer = self._buffer[1:]
                continue

            # Still accumulating a potential token
            break

        return "".join(out_parts)
