"""Pipeline orchestrator.

Owns the ``Session`` and is the only thing that changes it. Work is strictly
sequential: one unit at a time, in decomposition order, and at most one remote
call or validation run in flight. Each unit goes through the lifecycle graph in
``legacylink.agents.graph``; the session-level loop is the explicit ``drive``.

A discarded orchestrator (``abandon``) ignores every result that arrives
afterwards and its driver stops at the next suspension point.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Literal, Optional

from legacylink.agents.collaborator import RetryingCollaborator, TransformCollaborator
from legacylink.agents.graph import UnitRunState, build_unit_graph, recursion_limit
from legacylink.errors import BackendError, SessionAbandonedError, SessionBootstrapError
from legacylink.observability.logging import log_pipeline_event
from legacylink.observability.tracing import get_tracer, stage_span
from legacylink.pipeline import transitions as t
from legacylink.pipeline.report import build_report
from legacylink.resilience.retry import RetryPolicy
from legacylink.sandbox.executor import ValidationExecutor
from legacylink.schemas.migration import MigrationReport
from legacylink.schemas.session import (
    LogEvent, Session, SessionStatus, TestOutcome, TestStatus, Unit, UnitMetadata, UnitStatus, failures,
)
from legacylink.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

Severity = Literal['info', 'success', 'error', 'thinking']
SnapshotListener = Callable[[Session], None]
EventListener = Callable[[LogEvent], None]


class PipelineOrchestrator:
    def __init__(
        self,
        collaborator: TransformCollaborator,
        executor: Optional[ValidationExecutor] = None,
        *,
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_healing_attempts: Optional[int] = None,
        unit_failure_policy: Optional[Literal['continue', 'halt']] = None,
    ):
        s = settings or default_settings
        self.max_healing_attempts = s.max_healing_attempts if max_healing_attempts is None else max_healing_attempts
        if self.max_healing_attempts < 1:
            raise ValueError('max_healing_attempts must be >= 1')
        self.unit_failure_policy = unit_failure_policy or s.unit_failure_policy
        self.collaborator = RetryingCollaborator(collaborator, retry_policy or RetryPolicy.from_settings(s))
        self.executor = executor or ValidationExecutor(settings=s)

        self._session = Session()
        self._abandoned = False
        self._busy = False
        self._events: List[LogEvent] = []
        self._snapshot_listeners: List[SnapshotListener] = []
        self._event_listeners: List[EventListener] = []
        self._graph = build_unit_graph(self, self.max_healing_attempts)
        self._tracer = get_tracer('pipeline')

    # -- observation -----------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session.model_copy(deep=True)

    @property
    def session_id(self) -> str:
        return self._session.id

    @property
    def events(self) -> List[LogEvent]:
        return list(self._events)

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    @property
    def busy(self) -> bool:
        return self._busy

    def subscribe_snapshots(self, listener: SnapshotListener) -> None:
        self._snapshot_listeners.append(listener)

    def subscribe_events(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def report(self) -> MigrationReport:
        return build_report(self._session)

    def _notify(self, listeners, payload) -> None:
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception('listener %r failed', listener)

    def _log(self, message: str, severity: Severity = 'info', unit: Optional[Unit] = None) -> None:
        event = LogEvent(
            seq=len(self._events) + 1,
            severity=severity,
            scope='unit' if unit is not None else 'session',
            message=message,
            session_id=self._session.id,
            unit_id=unit.id if unit is not None else None,
        )
        self._events.append(event)
        log_pipeline_event(event)
        self._notify(self._event_listeners, event)

    def _dispatch(self, event: t.Event) -> None:
        if self._abandoned or event.session_id != self._session.id:
            logger.info('dropping %s for discarded session %s', type(event).__name__, event.session_id)
            raise SessionAbandonedError(event.session_id)
        self._session = t.apply(self._session, event)
        self._notify(self._snapshot_listeners, self.session)

    def _span(self, name: str, unit: Optional[Unit] = None, **attributes):
        return stage_span(self._tracer, name, self._session.id, unit.id if unit is not None else None, **attributes)

    # -- session bootstrap -----------------------------------------------

    async def start(self, input_text: str) -> Session:
        """Analyze and decompose ``input_text``. Ends PROCESSING, or FAILED when no units could be produced."""
        if not input_text or not input_text.strip():
            raise ValueError('input text is empty')
        if self._session.status is not SessionStatus.IDLE:
            raise RuntimeError('session already started; create a new orchestrator')
        sid = self._session.id
        try:
            self._dispatch(t.SessionStarted(session_id=sid, input_text=input_text))
            self._log('Engaging legacy logic analysis...', 'thinking')
            try:
                chunks = await self._bootstrap(sid, input_text)
            except SessionBootstrapError as e:
                self._log(f'Migration error: {e}', 'error')
                self._dispatch(t.BootstrapFailed(session_id=sid, reason=str(e)))
                return self.session
            if not chunks:
                self._log('Decomposition returned no modules; treating the whole input as one unit.', 'info')
            self._dispatch(t.UnitsDecomposed(session_id=sid, chunks=chunks))
            self._log(f'Decomposed system into {len(self._session.units)} module(s).', 'success')
        except SessionAbandonedError:
            pass
        return self.session

    async def _bootstrap(self, sid: str, input_text: str):
        try:
            with self._span('session.analyze'):
                plan = await self.collaborator.analyze(input_text)
            self._dispatch(t.AnalysisCompleted(session_id=sid, plan=plan))
            self._log('System blueprint synthesized.', 'success')

            self._log('Decomposing system into functional modules...', 'info')
            with self._span('session.decompose'):
                return await self.collaborator.decompose(input_text)
        except SessionAbandonedError:
            raise
        except Exception as e:
            raise SessionBootstrapError(str(e)) from e

    # -- driver ----------------------------------------------------------

    async def run(self, input_text: str) -> Session:
        await self.start(input_text)
        return await self.drive()

    def pending_unit(self) -> Optional[Unit]:
        if self._abandoned or self._session.status is not SessionStatus.PROCESSING:
            return None
        unit = self._session.current_unit
        if unit is None or unit.status is not UnitStatus.PENDING:
            return None
        return unit

    async def drive(self) -> Session:
        while await self.step():
            pass
        return self.session

    async def step(self) -> bool:
        """Process the pending unit at the current index. Returns False when there is nothing to do."""
        unit = self.pending_unit()
        if unit is None:
            return False
        if self._busy:
            raise RuntimeError('a unit is already in flight')
        self._busy = True
        try:
            await self._process(unit)
        except SessionAbandonedError:
            return False
        finally:
            self._busy = False
        return True

    async def _process(self, unit: Unit) -> None:
        sid = self._session.id
        self._log(f'Modernizing {unit.name}...', 'info', unit)
        state: UnitRunState = {'unit_id': unit.id, 'attempts': 0, 'failures': 0}
        try:
            await self._graph.ainvoke(state, config={'recursion_limit': recursion_limit(self.max_healing_attempts)})
        except SessionAbandonedError:
            raise
        except Exception as e:
            if not isinstance(e, BackendError):
                logger.exception('unexpected failure while processing %s', unit.name)
            self._log(f'Critical failure in {unit.name}: {e}', 'error', unit)
            self._dispatch(t.UnitFailed(session_id=sid, unit_id=unit.id, error=str(e), policy=self.unit_failure_policy))
            if self.unit_failure_policy == 'halt':
                self._log(f'Session halted after failure in {unit.name}.', 'error')
                return
        if self._session.status is SessionStatus.COMPLETED:
            r = self.report()
            self._log(f'Migration completed: {r.units_verified}/{r.units_total} module(s) verified, '
                      f'{r.units_error} failed.', 'success' if r.units_error == 0 else 'error')

    def _unit(self, state: UnitRunState) -> Unit:
        unit = self._session.current_unit
        if unit is None or unit.id != state['unit_id']:
            raise SessionAbandonedError(self._session.id)
        return unit

    # -- unit lifecycle steps (graph nodes) --------------------------------

    async def transform(self, state: UnitRunState) -> dict:
        unit = self._unit(state)
        self._log(f'Applying deep reasoning for {unit.name}...', 'thinking', unit)
        with self._span('unit.transform', unit):
            result = await self.collaborator.transform(unit)
        self._dispatch(t.UnitTransformed(
            session_id=self._session.id, unit_id=unit.id, candidate_text=result.candidate_source,
            metadata=UnitMetadata(business_rules=result.business_rules,
                                  field_mappings=[m.model_dump() for m in result.field_mappings]),
        ))
        return {'unit_id': unit.id}

    async def generate_tests(self, state: UnitRunState) -> dict:
        unit = self._unit(state)
        self._log(f'Generating test suite for {unit.name}...', 'info', unit)
        with self._span('unit.tests', unit):
            suite = await self.collaborator.generate_tests(unit.candidate_text, unit.source_text)
        self._dispatch(t.TestsGenerated(session_id=self._session.id, unit_id=unit.id,
                                        test_script=suite.test_code, coverage=suite.coverage_estimate))
        return {'unit_id': unit.id}

    async def validate(self, state: UnitRunState) -> dict:
        unit = self._unit(state)
        attempts = state.get('attempts', 0)
        prefix = f'[Self-Heal Attempt {attempts}] ' if attempts else ''
        self._log(f'{prefix}Executing validation suite for {unit.name}...', 'info', unit)
        with self._span('unit.validate', unit, **{'heal.attempt': attempts}):
            results = await self.executor.run(unit.candidate_text, unit.test_script)
        self._dispatch(t.ValidationRecorded(session_id=self._session.id, unit_id=unit.id, results=results))
        failed = len(failures(results))
        if failed == 0:
            self._log(f'{prefix}Validation passed for {unit.name} ({len(results)} test(s)).', 'success', unit)
        return {'failures': failed}

    async def heal(self, state: UnitRunState) -> dict:
        unit = self._unit(state)
        attempt = state.get('attempts', 0) + 1
        failing = failures(unit.test_results)
        self._log(f'Logic mismatch detected ({len(failing)} failure(s)). Initiating self-correction...', 'thinking', unit)
        with self._span('unit.heal', unit, **{'heal.attempt': attempt}):
            result = await self.collaborator.heal(unit, unit.candidate_text, unit.test_script, failing)
        self._dispatch(t.UnitHealed(session_id=self._session.id, unit_id=unit.id,
                                    candidate_text=result.candidate_source))
        self._log(f'Self-correction applied: {result.explanation or "revised implementation"}', 'success', unit)
        return {'attempts': attempt}

    async def finalize(self, state: UnitRunState) -> dict:
        unit = self._unit(state)
        if failures(unit.test_results):
            self._log(f'Maximum self-healing attempts reached. Recording best-effort implementation '
                      f'for {unit.name}.', 'error', unit)
        self._dispatch(t.UnitFinalized(session_id=self._session.id, unit_id=unit.id))
        self._log(f'{unit.name} modernization finished.', 'success', unit)
        return {'unit_id': unit.id}

    # -- on-demand verification --------------------------------------------

    async def revalidate(self, unit_id: str) -> List[TestOutcome]:
        """Re-run a finished unit's tests against its current candidate."""
        if self._busy:
            raise RuntimeError('another operation is in flight')
        unit = self._session.unit(unit_id)
        if not unit.status.terminal:
            raise ValueError(f'unit {unit_id} has not finished processing')
        if not unit.candidate_text or not unit.test_script:
            raise ValueError(f'unit {unit_id} has no candidate or test script to validate')
        self._log(f'Verification: testing {unit.name}...', 'info', unit)
        self._busy = True
        try:
            with self._span('unit.revalidate', unit):
                results = await self.executor.run(unit.candidate_text, unit.test_script)
        finally:
            self._busy = False
        self._dispatch(t.UnitRevalidated(session_id=self._session.id, unit_id=unit.id, results=results))
        passed = sum(1 for r in results if r.status is TestStatus.PASSED)
        self._log(f'Test run result: {passed}/{len(results)} PASSED', 'success' if passed == len(results) else 'error', unit)
        return results

    def abandon(self) -> None:
        if not self._abandoned:
            self._log('Session discarded; pending results will be ignored.', 'info')
            self._abandoned = True
