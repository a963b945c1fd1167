from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.responses import StreamingResponse
import json
from pydantic import BaseModel
from typing import Dict
import asyncio
import logging
from legacylink import db
from legacylink.agents.llm import LLMCollaborator
from legacylink.observability.logging import configure_logging
from legacylink.observability.tracing import configure_tracing, get_tracer
from legacylink.pipeline.orchestrator import PipelineOrchestrator
from legacylink.pipeline.report import build_report
from legacylink.sandbox.executor import ValidationExecutor
from legacylink.schemas.session import LogEvent, Session
from legacylink.settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="legacylink")

# Factories are swapped out in tests
app.state.collaborator_factory = LLMCollaborator
app.state.executor_factory = ValidationExecutor

# Running orchestrators plus the most recent finished ones (for revalidation);
# every run is also served from the database
LIVE: Dict[str, PipelineOrchestrator] = {}
_tasks: Dict[str, asyncio.Task] = {}

@app.on_event('startup')
async def _init():
    configure_logging(settings.log_level)
    configure_tracing()
    db.make_all(db.engine)

class MigrateRequest(BaseModel):
    source: str

def _snapshot_writer(run_id: str):
    def write(snapshot: Session):
        s = db.SessionLocal()
        try:
            db.update_run(s, run_id,
                          status=snapshot.status.value,
                          snapshot_json=snapshot.model_dump(mode='json'),
                          report_json=build_report(snapshot).model_dump(mode='json'))
            s.commit()
        finally:
            s.close()
    return write

def _event_writer(run_id: str):
    def write(ev: LogEvent):
        s = db.SessionLocal()
        try:
            db.append_event(s, run_id, seq=ev.seq, severity=ev.severity, scope=ev.scope,
                            unit_id=ev.unit_id, message=ev.message)
            s.commit()
        finally:
            s.close()
    return write

def _finish(run_id: str, task: asyncio.Task):
    _tasks.pop(run_id, None)
    if task.cancelled():
        LIVE.pop(run_id, None)
        return
    exc = task.exception()
    if exc is not None:
        logger.error('run %s crashed', run_id, exc_info=exc)
        LIVE.pop(run_id, None)
        return
    # keep only the most recent finished runs revalidatable
    finished = [rid for rid in LIVE if rid not in _tasks]
    while len(finished) > settings.api_finished_runs_kept:
        LIVE.pop(finished.pop(0), None)

async def _launch(source: str) -> str:
    if not source.strip():
        raise HTTPException(422, 'source is empty')
    orch = PipelineOrchestrator(app.state.collaborator_factory(), app.state.executor_factory())
    run_id = orch.session_id
    s = db.SessionLocal()
    try:
        db.create_run(s, run_id, status=orch.session.status.value, snapshot=orch.session.model_dump(mode='json'))
        s.commit()
    finally:
        s.close()
    orch.subscribe_snapshots(_snapshot_writer(run_id))
    orch.subscribe_events(_event_writer(run_id))
    LIVE[run_id] = orch
    task = asyncio.create_task(orch.run(source))
    _tasks[run_id] = task
    task.add_done_callback(lambda done: _finish(run_id, done))
    return run_id

@app.post('/v1/migrate')
async def migrate(req: MigrateRequest):
    tracer = get_tracer('api')
    with tracer.start_as_current_span('migrate_request'):
        return {"run_id": await _launch(req.source)}

@app.post('/v1/migrate/upload')
async def migrate_upload(file: UploadFile = File(...)):
    if file.size and (file.size / (1024*1024)) > settings.max_file_size_mb:
        raise HTTPException(413, 'file too large')
    tracer = get_tracer('api')
    with tracer.start_as_current_span('migrate_upload_request'):
        code = (await file.read()).decode('utf-8', errors='ignore')
        return {"run_id": await _launch(code)}

@app.get('/v1/migrate/{run_id}')
async def migrate_status(run_id: str):
    s = db.SessionLocal()
    try:
        run = db.get_run(s, run_id)
        if not run:
            raise HTTPException(404, 'run not found')
        return {"id": run.id, "status": run.status, "live": run_id in _tasks,
                "snapshot": run.snapshot_json, "report": run.report_json}
    finally:
        s.close()

@app.get('/v1/migrate/{run_id}/events')
async def migrate_events(run_id: str, after: int = 0):
    s = db.SessionLocal()
    try:
        if not db.get_run(s, run_id):
            raise HTTPException(404, 'run not found')
        return {"items": [{"seq": e.seq, "severity": e.severity, "scope": e.scope, "unit_id": e.unit_id,
                           "message": e.message} for e in db.list_events(s, run_id, after_seq=after)]}
    finally:
        s.close()

@app.get('/v1/migrate/{run_id}/stream')
async def migrate_stream(run_id: str):
    async def event_stream():
        while True:
            s = db.SessionLocal()
            try:
                run = db.get_run(s, run_id)
                if not run:
                    yield f"event: error\ndata: {json.dumps({'error':'not found'})}\n\n"
                    return
                progress = (run.report_json or {}).get('progress', 0)
                yield f"data: {json.dumps({'id': run.id, 'status': run.status, 'progress': progress})}\n\n"
                if run.status in ('COMPLETED', 'FAILED') or run_id not in _tasks:
                    return
            finally:
                s.close()
            await asyncio.sleep(1)
    return StreamingResponse(event_stream(), media_type='text/event-stream')

@app.post('/v1/migrate/{run_id}/units/{unit_id}/validate')
async def validate_unit(run_id: str, unit_id: str):
    orch = LIVE.get(run_id)
    if orch is None:
        raise HTTPException(404, 'run not active')
    if orch.busy:
        raise HTTPException(409, 'run is busy')
    try:
        results = await orch.revalidate(unit_id)
    except KeyError:
        raise HTTPException(404, 'unit not found')
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"unit_id": unit_id, "results": [r.model_dump(mode='json') for r in results]}

@app.delete('/v1/migrate/{run_id}')
async def abandon(run_id: str):
    orch = LIVE.pop(run_id, None)
    if orch is None:
        raise HTTPException(404, 'run not active')
    orch.abandon()
    return {"id": run_id, "abandoned": True}

@app.get('/v1/runs')
async def runs():
    s = db.SessionLocal()
    try:
        items = [{"id": r.id, "status": r.status, "created_at": r.created_at.isoformat()} for r in db.list_runs(s, limit=100)]
        return {"items": items}
    finally:
        s.close()
