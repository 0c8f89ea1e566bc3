from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class BotError(Exception):
    """Base for errors that are shown to the invoking user as-is."""


class PermissionDenied(BotError):
    def __init__(self, message: str = "You do not have permission to use this command.", required: Any = None):
        super().__init__(message)
        self.required = required


class NotFoundError(BotError):
    pass


class AlreadyExistsError(BotError):
    pass


class ValidationError(BotError):
    pass


class EnforcementError(BotError):
    """An external side effect (RCON, Discord) failed and the action was not persisted."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None  # type: ignore[assignment]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    reason: str

    @property
    def ok(self) -> bool:
        return False


StepResult = Union[Ok[Any], Failed]
