from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """A short message for the user plus how loudly to show it."""

    message: str
    severity: Severity
