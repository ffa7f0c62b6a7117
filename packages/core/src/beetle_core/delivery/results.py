"""Outcome of delivering one segment."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class SkipReason(str, Enum):
    NOT_A_SUGGESTION = "not_a_suggestion"
    DUPLICATE = "duplicate"
    BELOW_SEVERITY = "below_severity"
    NOT_IN_PR = "not_in_pr"


@dataclass(frozen=True)
class Posted:
    comment_id: int | None = None

    @property
    def posted(self) -> bool:
        return True


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason

    @property
    def posted(self) -> bool:
        return False


@dataclass(frozen=True)
class Failed:
    cause: str

    @property
    def posted(self) -> bool:
        return False


DeliveryResult = Union[Posted, Skipped, Failed]
