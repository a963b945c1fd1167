"""Validation runner executed inside the sandbox interpreter.

Run: python -I runner.py <payload.json> <results.json>

The payload carries the candidate source, the test script, the discovery
prefix and the module name the candidate is importable as. Coroutine tests run
on a fresh event loop each. Only the standard library is available to this
file; it must stay importable on its own.
"""
import asyncio
import contextlib
import inspect
import io
import json
import sys
import time
import traceback
import types

BOOTSTRAP_NAME = 'Bootstrap/Syntax check'


def _outcome(name, status, message=None, duration=0.0, kind='test'):
    return {'name': name, 'status': status, 'message': message, 'duration': round(duration, 6), 'kind': kind}


def _captured(stdout, stderr):
    parts = []
    if stdout.getvalue():
        parts.append('--- captured stdout ---\n' + stdout.getvalue())
    if stderr.getvalue():
        parts.append('--- captured stderr ---\n' + stderr.getvalue())
    return '\n'.join(parts)


def run(candidate, tests, prefix='test_', module_name='candidate'):
    module = types.ModuleType(module_name)
    module.__file__ = '<%s>' % module_name
    sys.modules[module_name] = module
    namespace = module.__dict__

    out, err = io.StringIO(), io.StringIO()
    try:
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            exec(compile(candidate, '<%s>' % module_name, 'exec'), namespace)
            exec(compile(tests, '<tests>', 'exec'), namespace)
    except BaseException:
        message = traceback.format_exc()
        extra = _captured(out, err)
        return [_outcome(BOOTSTRAP_NAME, 'FAILED', message + ('\n' + extra if extra else ''), kind='bootstrap')]

    discovered = [(name, obj) for name, obj in list(namespace.items())
                  if name.startswith(prefix) and callable(obj)]
    results = []
    for name, fn in discovered:
        out, err = io.StringIO(), io.StringIO()
        start = time.perf_counter()
        try:
            with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
                result = fn()
                if inspect.iscoroutine(result):
                    asyncio.run(result)
        except BaseException:
            message = traceback.format_exc()
            extra = _captured(out, err)
            results.append(_outcome(name, 'FAILED', message + ('\n' + extra if extra else ''),
                                    time.perf_counter() - start))
        else:
            results.append(_outcome(name, 'PASSED', None, time.perf_counter() - start))
    return results


def main(argv):
    payload_path, results_path = argv[1], argv[2]
    with open(payload_path, encoding='utf-8') as f:
        payload = json.load(f)
    results = run(payload['candidate'], payload['tests'],
                  payload.get('prefix', 'test_'), payload.get('module_name', 'candidate'))
    with open(results_path, 'w', encoding='utf-8') as f:
        json.dump(results, f)
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv))
