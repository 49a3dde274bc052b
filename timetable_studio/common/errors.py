from typing import Optional


class ParseError(ValueError):
    """Raised when a GTFS member file cannot be decoded as text."""


class LoadError(Exception):
    """Raised when a feed archive cannot be read, opened or decompressed.

    Only the failing feed is affected; feeds loaded earlier stay untouched.
    """

    def __init__(self, source_id: str, message: str, cause: Optional[BaseException] = None):
        self.source_id = source_id
        self.cause = cause
        super().__init__(f"{source_id}: {message}")
