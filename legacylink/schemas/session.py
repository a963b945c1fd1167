"""Session / unit state owned by the pipeline orchestrator."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

NOT_STARTED = -1


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    IDLE = 'IDLE'
    ANALYZING = 'ANALYZING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'

    @property
    def terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class UnitStatus(str, Enum):
    PENDING = 'PENDING'
    DONE = 'DONE'
    ERROR = 'ERROR'

    @property
    def terminal(self) -> bool:
        return self is not UnitStatus.PENDING


class TestStatus(str, Enum):
    PASSED = 'PASSED'
    FAILED = 'FAILED'


class TestOutcome(BaseModel):
    """Result of one discovered test, or a synthetic entry for a run that never reached the tests.

    ``duration`` is measured inside the sandbox; synthetic outcomes report 0.0
    and the value is never used for control flow.
    """
    __test__ = False  # keep pytest from collecting this model

    name: str
    status: TestStatus
    message: Optional[str] = None
    duration: float = 0.0
    kind: Literal['test', 'bootstrap', 'runner'] = 'test'

    @property
    def failed(self) -> bool:
        return self.status is TestStatus.FAILED


def failures(results: List[TestOutcome]) -> List[TestOutcome]:
    return [r for r in results if r.failed]


class UnitMetadata(BaseModel):
    business_rules: str = ''
    field_mappings: List[Dict[str, Any]] = []


class Unit(BaseModel):
    id: str
    name: str
    source_text: str
    candidate_text: str = ''
    test_script: str = ''
    healing_attempts: int = 0
    validation_runs: int = 0
    test_results: List[TestOutcome] = []
    status: UnitStatus = UnitStatus.PENDING
    verified: bool = False
    coverage: int = 0
    complexity: int = 1
    metadata: UnitMetadata = Field(default_factory=UnitMetadata)
    error: Optional[str] = None

    @property
    def line_count(self) -> int:
        return len(self.source_text.splitlines()) or 1


class Session(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.IDLE
    source_text: str = ''
    units: List[Unit] = []
    current_index: int = NOT_STARTED
    total_source_size: int = 0
    processed_source_size: int = 0
    overall_plan: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    finished_at: Optional[datetime] = None

    @property
    def current_unit(self) -> Optional[Unit]:
        if 0 <= self.current_index < len(self.units):
            return self.units[self.current_index]
        return None

    @property
    def progress(self) -> int:
        if not self.total_source_size:
            return 0
        return min(100, round(self.processed_source_size * 100 / self.total_source_size))

    def unit(self, unit_id: str) -> Unit:
        for u in self.units:
            if u.id == unit_id:
                return u
        raise KeyError(unit_id)


class LogEvent(BaseModel):
    seq: int
    severity: Literal['info', 'success', 'error', 'thinking']
    scope: Literal['session', 'unit']
    message: str
    session_id: str
    unit_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
