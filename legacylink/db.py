"""Database models & session factory for migration runs and their log events"""
from __future__ import annotations
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, JSON, MetaData
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import datetime
from legacylink.settings import settings

metadata = MetaData()
Base = declarative_base(metadata=metadata)

def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)

class Run(Base):
    __tablename__ = 'runs'
    id = Column(String, primary_key=True)
    status = Column(String)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    snapshot_json = Column(JSON)
    report_json = Column(JSON)
    events = relationship('RunEvent', backref='run', cascade='all, delete-orphan', order_by='RunEvent.seq')

class RunEvent(Base):
    __tablename__ = 'run_events'
    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, ForeignKey('runs.id', ondelete='CASCADE'), index=True)
    seq = Column(Integer)
    severity = Column(String)
    scope = Column(String)
    unit_id = Column(String, nullable=True)
    message = Column(Text)
    created_at = Column(DateTime, default=_utcnow)

def make_engine(url: str | None = None):
    url = url or settings.database_url
    kwargs = {'future': True}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
    return create_engine(url, **kwargs)

engine = make_engine()
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)

# CRUD / Helpers
from typing import Optional

def create_run(session, run_id: str, status: str = 'IDLE', snapshot: Optional[dict] = None):
    run = Run(id=run_id, status=status, snapshot_json=snapshot or {}, report_json={})
    session.add(run)
    return run

def update_run(session, run_id: str, **fields):
    run = session.get(Run, run_id)
    if run:
        for k, v in fields.items():
            if hasattr(run, k):
                setattr(run, k, v)
        session.add(run)
    return run

def get_run(session, run_id: str):
    return session.get(Run, run_id)

def list_runs(session, limit: int = 100):
    return session.query(Run).order_by(Run.created_at.desc()).limit(limit).all()

def append_event(session, run_id: str, *, seq: int, severity: str, scope: str, message: str, unit_id: Optional[str] = None):
    ev = RunEvent(run_id=run_id, seq=seq, severity=severity, scope=scope, unit_id=unit_id, message=message)
    session.add(ev)
    return ev

def list_events(session, run_id: str, after_seq: int = 0):
    return (session.query(RunEvent)
            .filter(RunEvent.run_id == run_id, RunEvent.seq > after_seq)
            .order_by(RunEvent.seq)
            .all())

def make_all(bind=None):
    Base.metadata.create_all(bind or engine)

if __name__ == '__main__':
    make_all()
