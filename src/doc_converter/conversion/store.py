"""
SQLAlchemy-backed job store.

One row per conversion job in the ``converts`` table. Timestamps are kept as
naive UTC in the database and handed out as timezone-aware UTC datetimes.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text, create_engine, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..errors import InvalidTransition, JobNotFound, JobStoreError
from .interfaces import JobStoreGateway
from .models import Job, JobStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class ConvertRow(Base):
    """Persisted conversion job"""

    __tablename__ = "converts"

    id = Column(String(64), primary_key=True)
    original_file = Column(Text, nullable=False)
    converted_file = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, index=True)
    error = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            original_file=self.original_file,
            converted_file=self.converted_file or "",
            status=self.status,
            error=self.error or "",
            created_at=_from_db(self.created_at),
            updated_at=_from_db(self.updated_at),
        )


def _to_db(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc)


class SqlJobStore(JobStoreGateway):
    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self._engine = create_engine(database_url, connect_args=connect_args)
        self._session_factory = sessionmaker(bind=self._engine, autocommit=False, autoflush=False)

    def init(self) -> None:
        """Create tables if they do not exist."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize job store: {e}")
            raise JobStoreError(str(e)) from e

    def close(self) -> None:
        self._engine.dispose()

    def create(self, job: Job) -> None:
        row = ConvertRow(
            id=job.id,
            original_file=job.original_file,
            converted_file=job.converted_file,
            status=job.status,
            error=job.error,
            created_at=_to_db(job.created_at),
            updated_at=_to_db(job.updated_at),
        )
        try:
            with self._session_factory() as session:
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"create {job.id}: {e}") from e

    def update(
        self,
        job_id: str,
        *,
        status: str,
        updated_at: datetime,
        error: str = "",
        converted_file: str = "",
    ) -> None:
        """Write a terminal transition. Only a pending job can be updated."""
        stmt = (
            update(ConvertRow)
            .where(ConvertRow.id == job_id, ConvertRow.status == JobStatus.PENDING)
            .values(
                status=status,
                error=error,
                converted_file=converted_file,
                updated_at=_to_db(updated_at),
            )
        )
        try:
            with self._session_factory() as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    session.rollback()
                    current = session.get(ConvertRow, job_id)
                    if current is None:
                        raise JobNotFound(job_id)
                    raise InvalidTransition(
                        f"job {job_id} is already {current.status}; cannot move to {status}"
                    )
                session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"update {job_id}: {e}") from e

    def get(self, job_id: str) -> Job:
        try:
            with self._session_factory() as session:
                row = session.get(ConvertRow, job_id)
                if row is None:
                    raise JobNotFound(job_id)
                return row.to_job()
        except SQLAlchemyError as e:
            raise JobStoreError(f"get {job_id}: {e}") from e

    def list_recent(self, limit: int = 100) -> list[Job]:
        stmt = select(ConvertRow).order_by(ConvertRow.created_at.desc()).limit(limit)
        return self._query(stmt)

    def list_older_than(self, cutoff: datetime) -> list[Job]:
        stmt = (
            select(ConvertRow)
            .where(ConvertRow.created_at < _to_db(cutoff))
            .order_by(ConvertRow.created_at)
        )
        return self._query(stmt)

    def delete(self, job_id: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(delete(ConvertRow).where(ConvertRow.id == job_id))
                session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"delete {job_id}: {e}") from e

    def _query(self, stmt) -> list[Job]:
        try:
            with self._session_factory() as session:
                return [row.to_job() for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise JobStoreError(str(e)) from e
