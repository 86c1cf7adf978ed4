"""Result types returned by share config edits and lifecycle operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class UnmountStatus(Enum):
    UNMOUNTED = 'unmounted'
    ALREADY_UNMOUNTED = 'already_unmounted'
    FAILED = 'failed'

    @property
    def ok(self) -> bool:
        return self is not UnmountStatus.FAILED


@dataclass(frozen=True)
class ShareBlock:
    """Inclusive line span of one share block plus the path it exports."""

    name: str
    start: int
    end: int
    path: str = ''


@dataclass(frozen=True)
class RemovedShare:
    name: str
    found: bool
    path: str = ''


@dataclass(frozen=True)
class MountedShare:
    share_name: str
    mount_path: str
    invocation: str


@dataclass
class UnmountOutcome:
    share_name: str
    path: str = ''
    warnings: list[str] = field(default_factory=list)
