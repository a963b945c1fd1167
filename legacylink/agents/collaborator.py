"""Transform collaborator interface.

The orchestrator only ever talks to a collaborator through
``RetryingCollaborator``, so every remote call is shielded by the same
retry policy.
"""
from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from legacylink.resilience.retry import RetryPolicy
from legacylink.schemas.migration import HealResult, RawUnit, TestSuite, TransformResult
from legacylink.schemas.session import TestOutcome, Unit


@runtime_checkable
class TransformCollaborator(Protocol):
    async def analyze(self, input_text: str) -> str: ...

    async def decompose(self, input_text: str) -> List[RawUnit]:
        """Partition the input into ordered units. Trusted one-to-one by the caller."""
        ...

    async def transform(self, unit: Unit) -> TransformResult: ...

    async def generate_tests(self, candidate_text: str, source_text: str) -> TestSuite: ...

    async def heal(self, unit: Unit, candidate_text: str, test_script: str,
                   failures: List[TestOutcome]) -> HealResult: ...


class RetryingCollaborator:
    def __init__(self, inner: TransformCollaborator, policy: RetryPolicy):
        self.inner = inner
        self.policy = policy

    async def analyze(self, input_text: str) -> str:
        return await self.policy.execute(lambda: self.inner.analyze(input_text), label='analyze')

    async def decompose(self, input_text: str) -> List[RawUnit]:
        return await self.policy.execute(lambda: self.inner.decompose(input_text), label='decompose')

    async def transform(self, unit: Unit) -> TransformResult:
        return await self.policy.execute(lambda: self.inner.transform(unit), label=f'transform {unit.name}')

    async def generate_tests(self, candidate_text: str, source_text: str) -> TestSuite:
        return await self.policy.execute(lambda: self.inner.generate_tests(candidate_text, source_text),
                                         label='generate tests')

    async def heal(self, unit: Unit, candidate_text: str, test_script: str,
                   failures: List[TestOutcome]) -> HealResult:
        return await self.policy.execute(lambda: self.inner.heal(unit, candidate_text, test_script, failures),
                                         label=f'heal {unit.name}')
