"""Sandboxed validation of candidate code against its generated tests.

Every run gets a fresh interpreter process started in isolated mode (``-I``:
no user site-packages, no PYTHON* environment, script dir not on sys.path)
inside a throw-away working directory. The candidate and the tests share one
module namespace, so tests are not isolated from each other within a run.

``run`` never raises: infrastructure failures come back as a single
``kind='runner'`` outcome and load failures as a single ``kind='bootstrap'``
outcome, so the healing loop can treat both like ordinary test failures.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from legacylink.observability.tracing import get_tracer, record_outcomes
from legacylink.schemas.session import TestOutcome, TestStatus
from legacylink.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

RUNNER_SCRIPT = Path(__file__).with_name('runner.py')
RUNNER_NAME = 'Runner Execution'

_outcomes = TypeAdapter(List[TestOutcome])


def runner_failure(message: str) -> List[TestOutcome]:
    return [TestOutcome(name=RUNNER_NAME, status=TestStatus.FAILED, message=message, duration=0.0, kind='runner')]


class ValidationExecutor:
    def __init__(
        self,
        python: Optional[str] = None,
        timeout: Optional[float] = None,
        test_prefix: Optional[str] = None,
        module_name: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        s = settings or default_settings
        self.python = python or s.sandbox_python or sys.executable
        self.timeout = timeout if timeout is not None else s.sandbox_timeout_seconds
        self.test_prefix = test_prefix or s.sandbox_test_prefix
        self.module_name = module_name or s.sandbox_module_name

    async def run(self, candidate_text: str, test_script: str) -> List[TestOutcome]:
        with get_tracer('sandbox').start_as_current_span('sandbox.run') as span:
            try:
                results = await self._run(candidate_text, test_script)
            except Exception as e:  # the executor boundary never raises
                logger.exception('sandbox infrastructure failure')
                results = runner_failure(f'{type(e).__name__}: {e}')
            failed = record_outcomes(span, results)
            logger.info('validation run finished: %d/%d passed', len(results) - failed, len(results),
                        extra={'extra_data': {'tests_total': len(results), 'tests_failed': failed}})
            return results

    async def _run(self, candidate_text: str, test_script: str) -> List[TestOutcome]:
        with tempfile.TemporaryDirectory(prefix='legacylink-sandbox-') as tmp:
            workdir = Path(tmp)
            payload_path = workdir / 'payload.json'
            results_path = workdir / 'results.json'
            payload_path.write_text(json.dumps({
                'candidate': candidate_text,
                'tests': test_script,
                'prefix': self.test_prefix,
                'module_name': self.module_name,
            }), encoding='utf-8')

            proc = await asyncio.create_subprocess_exec(
                self.python, '-I', str(RUNNER_SCRIPT), str(payload_path), str(results_path),
                cwd=str(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_sandbox_env(workdir),
            )
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                return runner_failure(f'validation run exceeded {self.timeout:g}s and was killed')

            if proc.returncode != 0 or not results_path.exists():
                detail = stderr.decode('utf-8', errors='replace').strip() or stdout.decode('utf-8', errors='replace').strip()
                return runner_failure(f'sandbox exited with code {proc.returncode}\n{detail}'.strip())

            try:
                return _outcomes.validate_json(results_path.read_bytes())
            except ValidationError as e:
                return runner_failure(f'sandbox produced malformed results: {e}')


def _sandbox_env(workdir: Path) -> dict:
    env = {'PATH': os.environ.get('PATH', ''), 'HOME': str(workdir), 'PYTHONDONTWRITEBYTECODE': '1',
           'PYTHONIOENCODING': 'utf-8'}
    if os.name == 'nt':
        env['SYSTEMROOT'] = os.environ.get('SYSTEMROOT', '')
    return env
