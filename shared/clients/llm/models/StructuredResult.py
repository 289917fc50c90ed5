from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class StructuredResult(BaseModel, Generic[T]):
    """Outcome of a structured generation call.

    Exactly one of value or error is set. Callers pair every result with an
    explicit fallback instead of catching exceptions.

    Attributes:
        ok:    True when the model answered with output matching the schema.
        value: The parsed output.
        error: Why parsing or generation failed.
        raw:   The raw model text, when there was one.
    """

    ok: bool
    value: T | None = None
    error: str | None = None
    raw: str | None = None

    @classmethod
    def success(cls, value: T, raw: str | None = None) -> "StructuredResult[T]":
        return cls(ok=True, value=value, raw=raw)

    @classmethod
    def failure(cls, error: str, raw: str | None = None) -> "StructuredResult[T]":
        return cls(ok=False, error=error, raw=raw)
