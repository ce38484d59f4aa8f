from __future__ import annotations


class RollkeeperError(Exception):
    """Base class for errors raised by the roll engine."""


class MalformedTermError(RollkeeperError, ValueError):
    """A term does not match `<count>d<faces>[kh|kl]` or `@key`."""

    def __init__(self, term: str, reason: str):
        super().__init__(f"Bad dice term {term!r}: {reason}")
        self.term = term
        self.reason = reason
