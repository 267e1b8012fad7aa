"""
VaultSync Server - Conflict Resolution Models

Tagged variants for conflict lifecycle and client decisions, and the
dataclasses returned by submissions and resolutions.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from models.database import Conflict, FileVersion


class ResolutionState(str, enum.Enum):
    """Lifecycle state of a Conflict"""
    PENDING = "pending"
    RESOLVED_KEEP_LOCAL = "resolved_keep_local"
    RESOLVED_KEEP_REMOTE = "resolved_keep_remote"
    RESOLVED_FORK = "resolved_fork"


class ResolutionDecision(str, enum.Enum):
    """Client decision for a pending conflict"""
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    FORK = "fork"

    def ResolvedState(self) -> ResolutionState:
        """State recorded once this decision has been applied"""
        return {
            ResolutionDecision.KEEP_LOCAL: ResolutionState.RESOLVED_KEEP_LOCAL,
            ResolutionDecision.KEEP_REMOTE: ResolutionState.RESOLVED_KEEP_REMOTE,
            ResolutionDecision.FORK: ResolutionState.RESOLVED_FORK,
        }[self]


class SubmitStatus(str, enum.Enum):
    """Outcome of a submitted change"""
    COMMITTED = "committed"
    UNCHANGED = "unchanged"  # Identical content already current
    CONFLICT = "conflict"


@dataclass
class SubmitResult:
    """Result of SubmitChange: a committed version, a no-op, or a pending conflict"""
    status: SubmitStatus
    version: Optional[FileVersion] = None
    conflict: Optional[Conflict] = None


@dataclass
class ConflictResolution:
    """
    Result of resolving a conflict

    When the resolution lost a race against a newer commit, state stays
    PENDING and conflict holds the re-targeted conflict.
    """
    conflict_id: str
    state: ResolutionState
    version: Optional[FileVersion] = None
    forked_version: Optional[FileVersion] = None
    conflict: Optional[Conflict] = None
