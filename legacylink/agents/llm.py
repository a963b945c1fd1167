"""LLM-backed transform collaborator (OpenAI chat models through LangChain)."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import openai
from langchain_core.exceptions import OutputParserException
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from legacylink.agents import prompts
from legacylink.errors import BackendError, FatalBackendError, TransientBackendError
from legacylink.schemas.migration import Decomposition, HealResult, RawUnit, TestSuite, TransformResult
from legacylink.schemas.session import TestOutcome, Unit
from legacylink.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_HTTP = {408, 409, 429}
MAX_FAILURE_CHARS = 4000


def _retry_after(exc: openai.APIStatusError) -> Optional[float]:
    try:
        value = exc.response.headers.get('retry-after')
        return float(value) if value is not None else None
    except (AttributeError, TypeError, ValueError):
        return None


def translate_error(exc: BaseException) -> BackendError:
    """Map client-library failures onto the transient / fatal taxonomy."""
    if isinstance(exc, BackendError):
        return exc
    if isinstance(exc, openai.APIConnectionError):  # includes timeouts
        return TransientBackendError(f'backend unreachable: {exc}')
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code in TRANSIENT_HTTP or exc.status_code >= 500:
            return TransientBackendError(f'backend returned {exc.status_code}: {exc}', retry_after=_retry_after(exc))
        return FatalBackendError(f'backend returned {exc.status_code}: {exc}')
    if isinstance(exc, (OutputParserException, ValidationError)):
        return FatalBackendError(f'malformed backend response: {exc}')
    return FatalBackendError(f'{type(exc).__name__}: {exc}')


def format_failures(failures: List[TestOutcome]) -> str:
    lines = []
    for f in failures:
        lines.append(f'## {f.name}\n{f.message or "(no diagnostic)"}')
    return '\n\n'.join(lines)[:MAX_FAILURE_CHARS]


class LLMCollaborator:
    def __init__(self, settings: Optional[Settings] = None, chat_model: Any = None, fast_model: Any = None):
        s = settings or default_settings
        self.settings = s
        # retries belong to RetryPolicy, not to the client
        self.chat = chat_model or ChatOpenAI(model=s.openai_chat_model, temperature=s.llm_temperature,
                                             api_key=s.openai_api_key, timeout=s.llm_request_timeout_seconds,
                                             max_retries=0)
        self.fast = fast_model or ChatOpenAI(model=s.openai_fast_model, temperature=s.llm_temperature,
                                             api_key=s.openai_api_key, timeout=s.llm_request_timeout_seconds,
                                             max_retries=0)

    async def _call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await fn()
        except Exception as e:
            err = translate_error(e)
            logger.warning('%s failed: %s', label, err, extra={'extra_data': {'transient': isinstance(err, TransientBackendError)}})
            raise err from e
        if result is None:
            raise FatalBackendError(f'{label}: backend returned no structured payload')
        return result

    async def analyze(self, input_text: str) -> str:
        chain = prompts.ANALYZE | self.chat
        msg = await self._call('analyze', lambda: chain.ainvoke({'source': input_text[:self.settings.analysis_char_limit]}))
        return msg.content if isinstance(msg.content, str) else str(msg.content)

    async def decompose(self, input_text: str) -> List[RawUnit]:
        chain = prompts.DECOMPOSE | self.fast.with_structured_output(Decomposition, method='function_calling')
        result = await self._call('decompose', lambda: chain.ainvoke({'source': input_text}))
        return result.chunks

    async def transform(self, unit: Unit) -> TransformResult:
        chain = prompts.TRANSFORM | self.chat.with_structured_output(TransformResult, method='function_calling')
        return await self._call('transform', lambda: chain.ainvoke({
            'name': unit.name, 'source': unit.source_text, 'module_name': self.settings.sandbox_module_name,
        }))

    async def generate_tests(self, candidate_text: str, source_text: str) -> TestSuite:
        chain = prompts.GENERATE_TESTS | self.fast.with_structured_output(TestSuite, method='function_calling')
        suite = await self._call('generate tests', lambda: chain.ainvoke({
            'candidate': candidate_text, 'source': source_text,
            'prefix': self.settings.sandbox_test_prefix, 'module_name': self.settings.sandbox_module_name,
        }))
        suite.coverage_estimate = max(0, min(100, suite.coverage_estimate))
        return suite

    async def heal(self, unit: Unit, candidate_text: str, test_script: str,
                   failures: List[TestOutcome]) -> HealResult:
        chain = prompts.HEAL | self.chat.with_structured_output(HealResult, method='function_calling')
        return await self._call('heal', lambda: chain.ainvoke({
            'name': unit.name, 'source': unit.source_text, 'candidate': candidate_text,
            'tests': test_script, 'failures': format_failures(failures),
        }))
