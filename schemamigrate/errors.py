"""Errors raised for queries run against a database."""

from __future__ import annotations


def _render_query(query: bytes | str) -> str:
    if isinstance(query, (bytes, bytearray, memoryview)):
        return bytes(query).decode("utf-8", errors="replace")
    return str(query)


class DatabaseError(Exception):
    """A failed query, with an excerpt of it and the underlying error."""

    def __init__(
        self,
        orig_err: BaseException | None,
        query: bytes | str = b"",
        err: str = "",
        line: int = 0,
    ) -> None:
        self.orig_err = orig_err
        self.query = query
        self.err = err
        self.line = line
        super().__init__(str(self))

    def __str__(self) -> str:
        query = _render_query(self.query)
        if not self.err:
            return f"{self.orig_err} in line {self.line}: {query}"
        return f"{self.err} in line {self.line}: {query} (details: {self.orig_err})"