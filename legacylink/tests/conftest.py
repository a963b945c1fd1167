"""Shared fixtures: scripted collaborator / executor fakes and a no-wait retry policy."""

from typing import List, Optional

import pytest

from legacylink.errors import FatalBackendError, TransientBackendError
from legacylink.resilience.retry import RetryPolicy
from legacylink.schemas.migration import HealResult, RawUnit, TestSuite, TransformResult
from legacylink.schemas.session import TestOutcome, TestStatus


def passed(name='test_ok'):
    return TestOutcome(name=name, status=TestStatus.PASSED, duration=0.01)


def failed(name='test_bad', message='AssertionError'):
    return TestOutcome(name=name, status=TestStatus.FAILED, message=message, duration=0.01)


class InFlight:
    """Counts concurrent operations across the fakes; the pipeline must never exceed one."""

    def __init__(self):
        self.current = 0
        self.peak = 0

    def __enter__(self):
        self.current += 1
        self.peak = max(self.peak, self.current)

    def __exit__(self, *exc):
        self.current -= 1


class FakeCollaborator:
    """Scripted backend. ``*_errors`` lists are raised (in order) before the call succeeds."""

    def __init__(self, chunks=None, plan='blueprint', inflight: Optional[InFlight] = None):
        self.chunks = [RawUnit(name='MAIN', code='PROCEDURE DIVISION.')] if chunks is None else chunks
        self.plan = plan
        self.inflight = inflight or InFlight()
        self.calls: List[tuple] = []
        self.analyze_errors: List[Exception] = []
        self.decompose_errors: List[Exception] = []
        self.transform_errors = {}   # unit name -> list of errors
        self.tests_errors: List[Exception] = []
        self.heal_errors: List[Exception] = []
        self.heal_sources: List[str] = []

    async def _maybe_raise(self, errors):
        if errors:
            raise errors.pop(0)

    async def analyze(self, input_text):
        with self.inflight:
            self.calls.append(('analyze', input_text))
            await self._maybe_raise(self.analyze_errors)
            return self.plan

    async def decompose(self, input_text):
        with self.inflight:
            self.calls.append(('decompose', input_text))
            await self._maybe_raise(self.decompose_errors)
            return list(self.chunks)

    async def transform(self, unit):
        with self.inflight:
            self.calls.append(('transform', unit.name))
            await self._maybe_raise(self.transform_errors.get(unit.name, []))
            return TransformResult(candidate_source=f'# {unit.name} v0', business_rules=f'rules for {unit.name}',
                                   field_mappings=[{'legacy_field': 'WS-AMT', 'target_field': 'amount'}])

    async def generate_tests(self, candidate_text, source_text):
        with self.inflight:
            self.calls.append(('generate_tests', candidate_text))
            await self._maybe_raise(self.tests_errors)
            return TestSuite(test_code='def test_ok():\n    assert True\n', coverage_estimate=80)

    async def heal(self, unit, candidate_text, test_script, failures):
        with self.inflight:
            self.calls.append(('heal', unit.name, [f.name for f in failures]))
            await self._maybe_raise(self.heal_errors)
            source = self.heal_sources.pop(0) if self.heal_sources else f'# {unit.name} healed'
            return HealResult(candidate_source=source, explanation='fixed rounding')

    def count(self, op):
        return sum(1 for c in self.calls if c[0] == op)


class ScriptedExecutor:
    """Returns the next scripted result list on each run; repeats the last one when exhausted."""

    def __init__(self, runs=None, inflight: Optional[InFlight] = None):
        self.runs = list(runs) if runs is not None else [[passed()]]
        self.inflight = inflight or InFlight()
        self.calls: List[tuple] = []

    async def run(self, candidate_text, test_script):
        with self.inflight:
            self.calls.append((candidate_text, test_script))
            idx = min(len(self.calls) - 1, len(self.runs) - 1)
            return list(self.runs[idx])


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeps):
    return RetryPolicy(max_retries=3, initial_delay=1.0, backoff_factor=2.0, sleep=sleeps)


@pytest.fixture
def inflight():
    return InFlight()


@pytest.fixture
def collaborator(inflight):
    return FakeCollaborator(inflight=inflight)


@pytest.fixture
def transient():
    return lambda msg='429 rate limited': TransientBackendError(msg)


@pytest.fixture
def fatal():
    return lambda msg='unparsable payload': FatalBackendError(msg)
