"""
Updates streamed by a scan pass, in order. Exactly one terminal update
(Completed, Cancelled or Failed) ends every pass.
"""
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..models import DuplicateGroup, IssueType, PhotoIssue, ScanResult


class ScanPhase(Enum):
    PREPARING = 'preparing'
    SCANNING = 'scanning'
    GROUPING = 'grouping'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


@dataclass(frozen=True)
class Progress:
    current: int
    total: int
    phase: ScanPhase

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total else 1.0


@dataclass(frozen=True)
class IssueFound:
    issue: PhotoIssue


@dataclass(frozen=True)
class SummaryUpdated:
    issue_type: IssueType
    count: int


@dataclass(frozen=True)
class DuplicateGroupFound:
    group: DuplicateGroup


@dataclass(frozen=True)
class Completed:
    result: ScanResult


@dataclass(frozen=True)
class Cancelled:
    partial_result: Optional[ScanResult]


@dataclass(frozen=True)
class Failed:
    error: BaseException
    message: str


ScanUpdate = Union[Progress, IssueFound, SummaryUpdated, DuplicateGroupFound, Completed, Cancelled, Failed]


def is_terminal(update: ScanUpdate) -> bool:
    return isinstance(update, (Completed, Cancelled, Failed))


class CancellationToken:
    """Cooperative cancel flag shared between a pass and whoever started it."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
