"""Session state transitions.

``apply(session, event)`` is a pure function: it never mutates its input and
returns the next ``Session``. The orchestrator performs the remote calls and
feeds their results back in as events, so the whole lifecycle can be replayed
and tested without a backend.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Type

from pydantic import BaseModel

from legacylink.schemas.migration import RawUnit
from legacylink.schemas.session import (
    NOT_STARTED, Session, SessionStatus, TestOutcome, Unit, UnitMetadata, UnitStatus, failures,
)

FALLBACK_UNIT_NAME = 'Main Module'


class InvalidTransition(ValueError):
    pass


class Event(BaseModel):
    session_id: str


class SessionStarted(Event):
    input_text: str

class AnalysisCompleted(Event):
    plan: str

class BootstrapFailed(Event):
    reason: str

class UnitsDecomposed(Event):
    chunks: List[RawUnit]

class UnitTransformed(Event):
    unit_id: str
    candidate_text: str
    metadata: UnitMetadata

class TestsGenerated(Event):
    __test__ = False

    unit_id: str
    test_script: str
    coverage: int = 0

class ValidationRecorded(Event):
    unit_id: str
    results: List[TestOutcome]

class UnitHealed(Event):
    unit_id: str
    candidate_text: str

class UnitFinalized(Event):
    unit_id: str

class UnitFailed(Event):
    unit_id: str
    error: str
    policy: Literal['continue', 'halt'] = 'continue'

class UnitRevalidated(Event):
    unit_id: str
    results: List[TestOutcome]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _lines(text: str) -> int:
    return len(text.splitlines()) or 1


def _complexity(text: str) -> int:
    return max(1, min(10, 1 + _lines(text) // 50))


def _current(session: Session, unit_id: str) -> Unit:
    unit = session.current_unit
    if session.status is not SessionStatus.PROCESSING or unit is None:
        raise InvalidTransition(f'session {session.id} has no unit in flight')
    if unit.id != unit_id:
        raise InvalidTransition(f'unit {unit_id} is not the unit in flight ({unit.id})')
    if unit.status.terminal:
        raise InvalidTransition(f'unit {unit_id} is already {unit.status.value}')
    return unit


def _replace_current(session: Session, unit: Unit) -> Session:
    units = list(session.units)
    units[session.current_index] = unit
    return session.model_copy(update={'units': units})


def _close_unit(session: Session, unit: Unit) -> Session:
    """Store a unit that just reached a terminal status and move past it."""
    nxt = _replace_current(session, unit)
    update = {
        'current_index': session.current_index + 1,
        'processed_source_size': session.processed_source_size + unit.line_count,
    }
    if session.current_index == len(session.units) - 1:
        update.update(status=SessionStatus.COMPLETED, finished_at=_now())
    return nxt.model_copy(update=update)


def session_started(session: Session, e: SessionStarted) -> Session:
    if session.status is not SessionStatus.IDLE:
        raise InvalidTransition(f'session {session.id} already started')
    return session.model_copy(update={
        'status': SessionStatus.ANALYZING,
        'source_text': e.input_text,
        'total_source_size': _lines(e.input_text),
        'units': [],
        'current_index': NOT_STARTED,
    })


def analysis_completed(session: Session, e: AnalysisCompleted) -> Session:
    if session.status is not SessionStatus.ANALYZING:
        raise InvalidTransition('analysis result outside the analyzing stage')
    return session.model_copy(update={'overall_plan': e.plan})


def bootstrap_failed(session: Session, e: BootstrapFailed) -> Session:
    if session.status is not SessionStatus.ANALYZING:
        raise InvalidTransition('bootstrap failure outside the analyzing stage')
    return session.model_copy(update={'status': SessionStatus.FAILED, 'units': [], 'finished_at': _now()})


def units_decomposed(session: Session, e: UnitsDecomposed) -> Session:
    if session.status is not SessionStatus.ANALYZING:
        raise InvalidTransition('decomposition result outside the analyzing stage')
    chunks = e.chunks or [RawUnit(name=FALLBACK_UNIT_NAME, code=session.source_text)]
    units = [
        Unit(id=f'unit-{idx}', name=c.name, source_text=c.code, complexity=_complexity(c.code))
        for idx, c in enumerate(chunks)
    ]
    return session.model_copy(update={'units': units, 'status': SessionStatus.PROCESSING, 'current_index': 0})


def unit_transformed(session: Session, e: UnitTransformed) -> Session:
    unit = _current(session, e.unit_id)
    return _replace_current(session, unit.model_copy(update={
        'candidate_text': e.candidate_text, 'metadata': e.metadata,
    }))


def tests_generated(session: Session, e: TestsGenerated) -> Session:
    unit = _current(session, e.unit_id)
    if unit.test_script:
        raise InvalidTransition(f'unit {unit.id} already has a test script')
    return _replace_current(session, unit.model_copy(update={'test_script': e.test_script, 'coverage': e.coverage}))


def validation_recorded(session: Session, e: ValidationRecorded) -> Session:
    unit = _current(session, e.unit_id)
    return _replace_current(session, unit.model_copy(update={
        'test_results': list(e.results),
        'validation_runs': unit.validation_runs + 1,
    }))


def unit_healed(session: Session, e: UnitHealed) -> Session:
    unit = _current(session, e.unit_id)
    return _replace_current(session, unit.model_copy(update={
        'candidate_text': e.candidate_text,
        'healing_attempts': unit.healing_attempts + 1,
    }))


def unit_finalized(session: Session, e: UnitFinalized) -> Session:
    unit = _current(session, e.unit_id)
    verified = bool(unit.test_results) and not failures(unit.test_results)
    return _close_unit(session, unit.model_copy(update={'status': UnitStatus.DONE, 'verified': verified}))


def unit_failed(session: Session, e: UnitFailed) -> Session:
    unit = _current(session, e.unit_id)
    closed = _close_unit(session, unit.model_copy(update={
        'status': UnitStatus.ERROR, 'coverage': 0, 'verified': False, 'error': e.error,
    }))
    if e.policy == 'halt':
        return closed.model_copy(update={'status': SessionStatus.FAILED, 'finished_at': closed.finished_at or _now()})
    return closed


def unit_revalidated(session: Session, e: UnitRevalidated) -> Session:
    units = list(session.units)
    for idx, unit in enumerate(units):
        if unit.id == e.unit_id:
            if not unit.status.terminal:
                raise InvalidTransition(f'unit {unit.id} is still in flight')
            verified = unit.status is UnitStatus.DONE and bool(e.results) and not failures(e.results)
            units[idx] = unit.model_copy(update={
                'test_results': list(e.results),
                'validation_runs': unit.validation_runs + 1,
                'verified': verified,
            })
            return session.model_copy(update={'units': units})
    raise InvalidTransition(f'unknown unit {e.unit_id}')


HANDLERS: Dict[Type[Event], Callable[[Session, Event], Session]] = {
    SessionStarted: session_started,
    AnalysisCompleted: analysis_completed,
    BootstrapFailed: bootstrap_failed,
    UnitsDecomposed: units_decomposed,
    UnitTransformed: unit_transformed,
    TestsGenerated: tests_generated,
    ValidationRecorded: validation_recorded,
    UnitHealed: unit_healed,
    UnitFinalized: unit_finalized,
    UnitFailed: unit_failed,
    UnitRevalidated: unit_revalidated,
}


def apply(session: Session, event: Event) -> Session:
    if event.session_id != session.id:
        raise InvalidTransition(f'event for session {event.session_id} applied to {session.id}')
    try:
        handler = HANDLERS[type(event)]
    except KeyError:
        raise InvalidTransition(f'no transition for {type(event).__name__}') from None
    return handler(session, event)
