"""
Exception taxonomy.

  - QueryValidationError  -- bad or missing request parameters (HTTP 400)
  - ResolutionError       -- a single field cannot be turned into SQL; the
                             query builder drops that field and carries on
  - QueryExecutionError   -- ClickHouse unreachable, query rejected, or rows
                             that cannot be decoded (HTTP 500)
  - SerializationError    -- CSV / JSON rendering failed (HTTP 500)
"""
from __future__ import annotations


class FlowhouseError(Exception):
    """Base class for every error raised by flowhouse."""


# ── Validation ───────────────────────────────────────────

class QueryValidationError(FlowhouseError):
    pass


class MissingBreakdownError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("No breakdown set")


class MissingStartTimeError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("No start time given")


class MissingEndTimeError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("No end time given")


class TimeParseError(QueryValidationError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Unable to parse time {value!r}")
        self.value = value


class TimeRangeError(QueryValidationError):
    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"Start time {start} is after end time {end}")


class DictionarySelectorError(QueryValidationError):
    pass


# ── Resolution ───────────────────────────────────────────

class ResolutionError(FlowhouseError):
    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{reason} (field {field!r})")
        self.field = field
        self.reason = reason


class UnresolvedDictionaryError(ResolutionError):
    def __init__(self, field: str) -> None:
        super().__init__(field, "Dict for field not found")


class UnknownFieldError(ResolutionError):
    def __init__(self, field: str) -> None:
        super().__init__(field, "Field is not part of the flow schema")


class InvalidFieldNameError(ResolutionError):
    def __init__(self, field: str) -> None:
        super().__init__(field, "Field name is not a valid identifier")


# ── Execution / rendering ────────────────────────────────

class QueryExecutionError(FlowhouseError):
    pass


class UnsupportedColumnTypeError(QueryExecutionError):
    def __init__(self, column: str, type_name: str) -> None:
        super().__init__(f"Column {column!r} has unsupported type {type_name!r}")
        self.column = column
        self.type_name = type_name


class SerializationError(FlowhouseError):
    pass
