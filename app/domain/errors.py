from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INCOMPLETE_ANSWERS = "incomplete_answers"
    CONFLICT = "conflict"
    UNKNOWN_QUESTION = "unknown_question"
    INVALID_ANSWER = "invalid_answer"
    GENERATOR_FAILURE = "generator_failure"
    TIMEOUT = "timeout"


@dataclass(slots=True, frozen=True)
class CheckInError:
    kind: ErrorKind
    message: str
    missing_question_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class Result(Generic[T]):
    """
    Outcome of an engine operation: exactly one of `value` / `error` is meaningful.
    Expected failures (conflicts, bad state, missing answers) come back here
    instead of being raised.
    """
    value: Optional[T] = None
    error: Optional[CheckInError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, *, missing: tuple[str, ...] = ()) -> "Result[T]":
        return cls(error=CheckInError(kind=kind, message=message, missing_question_ids=missing))


class GeneratorError(Exception):
    """The question collaborator (template or LLM) could not produce a question."""


class DuplicateInProgress(Exception):
    """A create hit the one-in-progress-per-slot constraint."""
