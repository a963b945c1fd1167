"""Tests for the sandboxed validation executor (runs a real isolated interpreter)."""

import pytest

from legacylink.sandbox.executor import RUNNER_NAME, ValidationExecutor
from legacylink.sandbox.runner import BOOTSTRAP_NAME
from legacylink.schemas.session import TestStatus

CANDIDATE = '''
from decimal import Decimal

def apply_interest(balance, rate):
    return (Decimal(balance) * (1 + Decimal(rate))).quantize(Decimal("0.01"))
'''

TESTS = '''
from decimal import Decimal

def test_interest_rounds_to_cents():
    assert apply_interest("100.00", "0.015") == Decimal("101.50")

def test_wrong_expectation():
    assert apply_interest("100.00", "0.10") == Decimal("999.00"), "expected mismatch"

def helper_not_a_test():
    raise RuntimeError("never called")
'''


@pytest.fixture
def executor():
    return ValidationExecutor(timeout=20)


class TestRun:

    @pytest.mark.asyncio
    async def test_pass_and_fail_in_discovery_order(self, executor):
        results = await executor.run(CANDIDATE, TESTS)

        assert [r.name for r in results] == ['test_interest_rounds_to_cents', 'test_wrong_expectation']
        assert results[0].status is TestStatus.PASSED
        assert results[0].message is None
        assert results[1].status is TestStatus.FAILED
        assert 'expected mismatch' in results[1].message
        assert 'Traceback' in results[1].message
        assert all(r.kind == 'test' for r in results)
        assert all(r.duration >= 0 for r in results)

    @pytest.mark.asyncio
    async def test_syntax_error_yields_single_bootstrap_outcome(self, executor):
        results = await executor.run('def broken(:\n    pass\n', TESTS)

        assert len(results) == 1
        assert results[0].name == BOOTSTRAP_NAME
        assert results[0].kind == 'bootstrap'
        assert results[0].status is TestStatus.FAILED
        assert 'SyntaxError' in results[0].message

    @pytest.mark.asyncio
    async def test_import_time_error_is_bootstrap_failure(self, executor):
        results = await executor.run('import does_not_exist_anywhere\n', 'def test_a():\n    pass\n')

        assert [r.kind for r in results] == ['bootstrap']
        assert 'ModuleNotFoundError' in results[0].message

    @pytest.mark.asyncio
    async def test_candidate_importable_as_module(self, executor):
        tests = 'import candidate\n\ndef test_module_attr():\n    assert candidate.VALUE == 42\n'
        results = await executor.run('VALUE = 42\n', tests)

        assert [r.status for r in results] == [TestStatus.PASSED]

    @pytest.mark.asyncio
    async def test_tests_share_one_namespace(self, executor):
        tests = (
            'STATE = []\n'
            'def test_first():\n    STATE.append(1)\n'
            'def test_second():\n    assert STATE == [1]\n'
        )
        results = await executor.run('', tests)

        assert [r.status for r in results] == [TestStatus.PASSED, TestStatus.PASSED]

    @pytest.mark.asyncio
    async def test_captured_output_attached_to_failure(self, executor):
        tests = 'def test_noisy():\n    print("balance=10")\n    assert False\n'
        results = await executor.run('', tests)

        assert results[0].status is TestStatus.FAILED
        assert 'balance=10' in results[0].message

    @pytest.mark.asyncio
    async def test_sys_exit_inside_test_is_a_failure(self, executor):
        tests = 'import sys\n\ndef test_exit():\n    sys.exit(3)\n\ndef test_after():\n    pass\n'
        results = await executor.run('', tests)

        assert [r.status for r in results] == [TestStatus.FAILED, TestStatus.PASSED]

    @pytest.mark.asyncio
    async def test_no_tests_discovered(self, executor):
        assert await executor.run('X = 1\n', 'Y = 2\n') == []

    @pytest.mark.asyncio
    async def test_coroutine_tests_are_awaited(self, executor):
        tests = (
            'import asyncio\n\n'
            'async def test_async_fails():\n    await asyncio.sleep(0)\n    assert False, "async body ran"\n\n'
            'async def test_async_passes():\n    assert VALUE == 42\n'
        )
        results = await executor.run('VALUE = 42\n', tests)

        assert [(r.name, r.status) for r in results] == [
            ('test_async_fails', TestStatus.FAILED), ('test_async_passes', TestStatus.PASSED),
        ]
        assert 'async body ran' in results[0].message

    @pytest.mark.asyncio
    async def test_custom_prefix(self):
        executor = ValidationExecutor(timeout=20, test_prefix='check_')
        results = await executor.run('', 'def check_one():\n    pass\n\ndef test_ignored():\n    pass\n')

        assert [r.name for r in results] == ['check_one']

    @pytest.mark.asyncio
    async def test_repeated_runs_are_stable(self, executor):
        first = await executor.run(CANDIDATE, TESTS)
        second = await executor.run(CANDIDATE, TESTS)

        assert [(r.name, r.status) for r in first] == [(r.name, r.status) for r in second]


class TestInfrastructureFailures:

    @pytest.mark.asyncio
    async def test_timeout_becomes_runner_outcome(self):
        executor = ValidationExecutor(timeout=1)
        tests = 'import time\n\ndef test_hang():\n    time.sleep(30)\n'
        results = await executor.run('', tests)

        assert len(results) == 1
        assert results[0].name == RUNNER_NAME
        assert results[0].kind == 'runner'
        assert 'killed' in results[0].message

    @pytest.mark.asyncio
    async def test_hard_exit_becomes_runner_outcome(self, executor):
        tests = 'import os\n\ndef test_kill():\n    os._exit(7)\n'
        results = await executor.run('', tests)

        assert len(results) == 1
        assert results[0].kind == 'runner'
        assert 'code 7' in results[0].message

    @pytest.mark.asyncio
    async def test_missing_interpreter_never_raises(self):
        executor = ValidationExecutor(python='/nonexistent/bin/python3')
        results = await executor.run('X = 1', 'def test_x():\n    pass\n')

        assert len(results) == 1
        assert results[0].kind == 'runner'
        assert results[0].status is TestStatus.FAILED
