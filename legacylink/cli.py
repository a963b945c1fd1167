"""Command line entry point.
Run: legacylink migrate ./legacy --out report.json
"""
import asyncio
import json
import sys
from pathlib import Path

import click

from legacylink.agents.llm import LLMCollaborator
from legacylink.ingestion.sources import collect_sources
from legacylink.observability.logging import configure_logging
from legacylink.pipeline.orchestrator import PipelineOrchestrator
from legacylink.schemas.session import LogEvent, SessionStatus
from legacylink.settings import settings

MARKS = {'info': '-', 'success': '+', 'error': '!', 'thinking': '~'}


def print_event(ev: LogEvent) -> None:
    where = f'[{ev.unit_id}] ' if ev.unit_id else ''
    click.echo(f'{MARKS[ev.severity]} {where}{ev.message}', err=True)


async def run_migration(path: str, max_healing: int | None = None, halt: bool = False,
                        out: str | None = None, collaborator=None) -> int:
    source = collect_sources(path)
    if not source.strip():
        click.echo(f'no legacy sources found under {path}', err=True)
        return 1
    orch = PipelineOrchestrator(
        collaborator or LLMCollaborator(),
        max_healing_attempts=max_healing,
        unit_failure_policy='halt' if halt else None,
    )
    orch.subscribe_events(print_event)
    session = await orch.run(source)
    text = json.dumps(orch.report().model_dump(mode='json'), indent=2)
    if out:
        Path(out).write_text(text, encoding='utf-8')
    click.echo(text)
    return 0 if session.status is SessionStatus.COMPLETED else 1


@click.group()
@click.version_option(package_name='legacylink')
def main():
    """legacylink - migrate legacy source code into verified Python modules."""
    configure_logging(settings.log_level, stream=sys.stderr)


@main.command()
@click.argument('path', type=click.Path(exists=True))
@click.option('--max-healing', type=click.IntRange(min=1), default=None, help='Self-healing attempts per unit')
@click.option('--halt-on-error', is_flag=True, help='Stop the session at the first failed unit')
@click.option('--out', default=None, help='Write the JSON report here')
def migrate(path, max_healing, halt_on_error, out):
    """Migrate a legacy source file or folder and print the report."""
    sys.exit(asyncio.run(run_migration(path, max_healing, halt_on_error, out)))


if __name__ == '__main__':
    main()
