from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class EntryState(Enum):
    """How far a roster entry got through provisioning"""
    NAMING_RESOLVED = "naming resolved"
    IDENTITIES_RESOLVED = "identities resolved"
    PROJECT_CREATED = "project created"
    POLICY_APPLIED = "policy applied"
    MEMBERS_GRANTED = "members granted"
    DONE = "done"
    SKIPPED_NO_IDENTITIES = "skipped: no gitlab users found"
    SKIPPED_CREATE_FAILED = "skipped: project creation failed"
    SKIPPED_EXISTING = "skipped: project already exists"


@dataclass
class StepResult:
    """Outcome of one best-effort call (unprotect, protect, add member)"""
    step: str
    ok: bool
    error: Optional[Exception] = None


@dataclass
class ResolvedIdentity:
    student: str
    user_id: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.user_id is not None


@dataclass
class EntryResult:
    """Everything that happened to one roster line"""
    row: int
    team: Tuple[str, ...]
    name: Optional[str] = None
    state: EntryState = EntryState.NAMING_RESOLVED
    identities: List[ResolvedIdentity] = field(default_factory=list)
    project_id: Optional[int] = None
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def user_ids(self) -> List[int]:
        return [i.user_id for i in self.identities if i.user_id is not None]

    @property
    def failed_steps(self) -> List[StepResult]:
        return [s for s in self.steps if not s.ok]

    @property
    def members_added(self) -> int:
        return sum(1 for s in self.steps
                   if s.ok and s.step.startswith("add member"))
