"""OpenTelemetry tracing for pipeline stages and sandbox runs."""
from contextlib import contextmanager
from typing import Iterable, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from legacylink.schemas.session import TestOutcome

_tracer_initialized = False

def configure_tracing(service_name: str = 'legacylink', exporter: SpanExporter | None = None):
    global _tracer_initialized
    if _tracer_initialized:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _tracer_initialized = True

def get_tracer(name: str = 'pipeline'):
    return trace.get_tracer(f'legacylink.{name}')

@contextmanager
def stage_span(tracer, stage: str, session_id: str, unit_id: Optional[str] = None, **attributes):
    """Span for one pipeline stage, tagged with the session and (for unit steps) the unit."""
    attrs = {'session.id': session_id}
    if unit_id is not None:
        attrs['unit.id'] = unit_id
    attrs.update(attributes)
    with tracer.start_as_current_span(stage, attributes=attrs) as span:
        yield span

def record_outcomes(span, results: Iterable[TestOutcome]) -> int:
    """Attach pass/fail counts of a validation run to ``span``; returns the failure count."""
    results = list(results)
    failed = sum(1 for r in results if r.failed)
    span.set_attribute('tests.total', len(results))
    span.set_attribute('tests.failed', failed)
    synthetic = [r.kind for r in results if r.kind != 'test']
    if synthetic:
        span.set_attribute('sandbox.failure_kind', synthetic[0])
    return failed
