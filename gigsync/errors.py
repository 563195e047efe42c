from __future__ import annotations


class GigsyncError(Exception):
    pass


class ConfigurationError(GigsyncError):
    """Fatal setup problem detected before any store is mutated."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        message = f"Missing or invalid configuration: {name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class RowParseError(GigsyncError):
    def __init__(self, row_index: int, reason: str) -> None:
        self.row_index = row_index
        self.reason = reason
        super().__init__(f"row {row_index + 1}: {reason}")


class RateLimitError(GigsyncError):
    pass


class LockTimeout(GigsyncError):
    pass
