from __future__ import annotations

import json
from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, Enum, String, create_engine, select, update
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import ParseJobRecord, ParseJobState

Base = declarative_base()


class ParseJobModel(Base):
    __tablename__ = "parse_jobs"
    id = Column(String, primary_key=True)
    file_path = Column(String)
    state = Column(Enum(ParseJobState), index=True)
    error_message = Column(String)
    output_path = Column(String)
    started_at = Column(DateTime)
    updated_at = Column(DateTime)
    config_json = Column(String)


class ParsingRepository:
    """
    Persistence boundary for parse jobs. All methods are synchronous.
    """

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        raise NotImplementedError

    def save_job(self, job: ParseJobRecord) -> None:
        raise NotImplementedError

    def update_job_state(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        error_message: Optional[str] = None,
        output_path: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError

    def list_jobs(self, state: Optional[ParseJobState] = None) -> List[ParseJobRecord]:
        raise NotImplementedError


class InMemoryParsingRepository(ParsingRepository):
    """
    In-memory store for local runs and tests. Keeps copies of the dataclasses
    to avoid cross-mutation between calls.
    """

    def __init__(self):
        self.jobs: Dict[str, ParseJobRecord] = {}

    def _clone(self, obj):
        return deepcopy(obj)

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: ParseJobRecord) -> None:
        self.jobs[job.id] = self._clone(job)

    def update_job_state(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        error_message: Optional[str] = None,
        output_path: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        if state is not None:
            job.state = state
        if error_message is not None:
            job.error_message = error_message
        if output_path is not None:
            job.output_path = output_path
        if started_at is not None:
            job.started_at = started_at
        job.updated_at = datetime.utcnow()
        self.jobs[job_id] = self._clone(job)

    def list_jobs(self, state: Optional[ParseJobState] = None) -> List[ParseJobRecord]:
        return [self._clone(j) for j in self.jobs.values() if state is None or j.state == state]


class SqlAlchemyParsingRepository(ParsingRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    def _to_record(self, model: ParseJobModel) -> ParseJobRecord:
        return ParseJobRecord(
            id=model.id,
            file_path=model.file_path,
            state=model.state,
            error_message=model.error_message,
            output_path=model.output_path,
            started_at=model.started_at,
            updated_at=model.updated_at,
            config_json=json.loads(model.config_json or "{}"),
        )

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        with self._session() as session:
            model = session.get(ParseJobModel, job_id)
            if not model:
                return None
            return self._to_record(model)

    def save_job(self, job: ParseJobRecord) -> None:
        with self._session() as session:
            model = ParseJobModel(
                id=job.id,
                file_path=job.file_path,
                state=job.state,
                error_message=job.error_message,
                output_path=job.output_path,
                started_at=job.started_at,
                updated_at=job.updated_at,
                config_json=json.dumps(job.config_json or {}),
            )
            session.merge(model)
            session.commit()

    def update_job_state(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        error_message: Optional[str] = None,
        output_path: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        with self._session() as session:
            stmt = update(ParseJobModel).where(ParseJobModel.id == job_id)
            values = {"updated_at": datetime.utcnow()}
            if state is not None:
                values["state"] = state
            if error_message is not None:
                values["error_message"] = error_message
            if output_path is not None:
                values["output_path"] = output_path
            if started_at is not None:
                values["started_at"] = started_at
            session.execute(stmt.values(**values))
            session.commit()

    def list_jobs(self, state: Optional[ParseJobState] = None) -> List[ParseJobRecord]:
        with self._session() as session:
            stmt = select(ParseJobModel)
            if state is not None:
                stmt = stmt.where(ParseJobModel.state == state)
            models = session.execute(stmt).scalars().all()
            return [self._to_record(m) for m in models]
