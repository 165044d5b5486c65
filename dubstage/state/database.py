"""
SQL Job Store
=============

SQLite-backed implementation of the JobStore contract.

Two tables:
- jobs    one row per project directory
- stages  one row per (job, stage), always all six

Reset is a logical rewind: the job row and its id survive, every stage goes
back to pending. Blocking SQLAlchemy sessions run in worker threads so the
event loop is never held up by disk I/O.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Integer,
    Float,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import (
    declarative_base,
    sessionmaker,
    relationship,
    Session,
)

from ..contracts import JobStore
from ..errors import BackendError
from ..stages import (
    STAGE_ORDER,
    ReferenceMode,
    Stage,
    StageStatus,
    parse_reference_mode,
    parse_stage,
    parse_status,
)
from .models import Job, StageState


Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRow(Base):
    """One dubbing job per project directory"""
    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True)
    project_dir = Column(Text, nullable=False, unique=True)
    video_path = Column(Text, nullable=False)
    subtitle_count = Column(Integer, default=0)
    reference_mode = Column(String(16), default=ReferenceMode.NONE.value)
    reference_audio_path = Column(Text)
    tts_plugin_id = Column(String(64))

    status = Column(String(16), default=StageStatus.PENDING.value, index=True)
    current_stage = Column(String(16))
    error = Column(Text)

    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    stages = relationship(
        "StageRow",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="StageRow.position",
    )


class StageRow(Base):
    """State of one stage within one job"""
    __tablename__ = "stages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(64), ForeignKey("jobs.id"), nullable=False, index=True)
    stage = Column(String(16), nullable=False)
    position = Column(Integer, nullable=False)

    status = Column(String(16), default=StageStatus.PENDING.value)
    progress = Column(Float, default=0.0)
    output_path = Column(Text)
    error = Column(Text)
    completed_at = Column(DateTime)

    job = relationship("JobRow", back_populates="stages")

    __table_args__ = (
        UniqueConstraint("job_id", "stage", name="uq_stage_job_stage"),
    )


def _stage_to_model(row: StageRow) -> StageState:
    return StageState.from_dict({
        "job_id": row.job_id,
        "stage": row.stage,
        "status": row.status,
        "progress": row.progress,
        "output_path": row.output_path,
        "error": row.error,
        "completed_at": row.completed_at,
    })


def _job_to_model(row: JobRow) -> Job:
    return Job(
        id=row.id,
        project_dir=row.project_dir,
        video_path=row.video_path,
        subtitle_count=row.subtitle_count or 0,
        reference_mode=parse_reference_mode(row.reference_mode or ReferenceMode.NONE),
        reference_audio_path=row.reference_audio_path,
        tts_plugin_id=row.tts_plugin_id,
        status=parse_status(row.status or StageStatus.PENDING),
        current_stage=parse_stage(row.current_stage) if row.current_stage else None,
        error=row.error,
        stages=[_stage_to_model(s) for s in row.stages],
    )


class StateDatabase:
    """
    Synchronous SQLite access for jobs and stages.

    All public methods open their own session and return plain dataclasses,
    never ORM rows.
    """

    def __init__(self, db_path: "str | Path"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )

        # WAL mode so the CLI can read while an orchestrator writes
        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    def get_session(self) -> Session:
        return self.Session()

    # =========================================================================
    # Job Operations
    # =========================================================================

    def get_job(self, project_dir: str) -> Optional[Job]:
        with self.get_session() as session:
            row = session.query(JobRow).filter(JobRow.project_dir == project_dir).first()
            return _job_to_model(row) if row else None

    def get_job_by_id(self, job_id: str) -> Optional[Job]:
        with self.get_session() as session:
            row = session.get(JobRow, job_id)
            return _job_to_model(row) if row else None

    def create_job(
        self,
        project_dir: str,
        video_path: str,
        subtitle_count: int,
        reference_mode: "str | ReferenceMode",
        reference_audio_path: Optional[str] = None,
        tts_plugin_id: Optional[str] = None,
    ) -> Job:
        """
        Create a job with six pending stages.

        An existing job for the same project directory is returned as-is.
        """
        if not project_dir or not str(project_dir).strip():
            raise BackendError("project_dir must not be empty")
        if not video_path or not str(video_path).strip():
            raise BackendError("video_path must not be empty")
        if subtitle_count < 0:
            raise BackendError(f"subtitle_count must be >= 0, got {subtitle_count}")
        try:
            mode = parse_reference_mode(reference_mode)
        except ValueError as e:
            raise BackendError(str(e)) from e

        with self.get_session() as session:
            existing = session.query(JobRow).filter(JobRow.project_dir == project_dir).first()
            if existing:
                return _job_to_model(existing)

            job_id = str(uuid.uuid4())
            row = JobRow(
                id=job_id,
                project_dir=project_dir,
                video_path=video_path,
                subtitle_count=subtitle_count,
                reference_mode=mode.value,
                reference_audio_path=reference_audio_path,
                tts_plugin_id=tts_plugin_id,
                status=StageStatus.PENDING.value,
            )
            row.stages = [
                StageRow(job_id=job_id, stage=stage.value, position=i)
                for i, stage in enumerate(STAGE_ORDER)
            ]
            session.add(row)
            session.commit()
            session.refresh(row)
            return _job_to_model(row)

    def reset_job(self, job_id: str) -> None:
        """Rewind the job and all of its stages to pending"""
        with self.get_session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise BackendError(f"Job {job_id} not found")

            row.status = StageStatus.PENDING.value
            row.current_stage = None
            row.error = None
            for stage_row in self._ensure_stages(row):
                stage_row.status = StageStatus.PENDING.value
                stage_row.progress = 0.0
                stage_row.output_path = None
                stage_row.error = None
                stage_row.completed_at = None
            session.commit()

    def update_stage(
        self,
        job_id: str,
        stage: Stage,
        status: StageStatus,
        progress: Optional[float] = None,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> StageState:
        """
        Write one stage and roll the result up into the job row.

        completed forces progress 100 and stamps completed_at; pending clears
        output path and completion time.
        """
        stage = parse_stage(stage)
        status = parse_status(status)

        with self.get_session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise BackendError(f"Job {job_id} not found")

            stage_rows = {s.stage: s for s in self._ensure_stages(row)}
            stage_row = stage_rows[stage.value]
            stage_row.status = status.value

            if status == StageStatus.COMPLETED:
                stage_row.progress = 100.0
                stage_row.completed_at = _now()
            elif status == StageStatus.PENDING:
                stage_row.progress = progress if progress is not None else 0.0
                stage_row.output_path = None
                stage_row.completed_at = None
            elif progress is not None:
                stage_row.progress = progress

            if output_path is not None and status != StageStatus.PENDING:
                stage_row.output_path = output_path
            if error is not None:
                stage_row.error = error

            self._roll_up(row, stage, status, error)
            session.commit()
            return _stage_to_model(stage_row)

    def list_jobs(self, status: Optional[str] = None) -> list[Job]:
        with self.get_session() as session:
            query = session.query(JobRow)
            if status:
                query = query.filter(JobRow.status == status)
            return [_job_to_model(r) for r in query.order_by(JobRow.created_at.desc()).all()]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_stages(self, row: JobRow) -> list:
        """Fill in stage rows missing from older or hand-edited databases"""
        present = {s.stage for s in row.stages}
        for i, stage in enumerate(STAGE_ORDER):
            if stage.value not in present:
                row.stages.append(StageRow(job_id=row.id, stage=stage.value, position=i))
        return row.stages

    def _roll_up(self, row: JobRow, stage: Stage, status: StageStatus, error: Optional[str]) -> None:
        if status == StageStatus.RUNNING:
            row.current_stage = stage.value
            row.status = StageStatus.RUNNING.value
        elif status == StageStatus.FAILED:
            row.current_stage = stage.value
            row.status = StageStatus.FAILED.value
            if error is not None:
                row.error = error
        elif status == StageStatus.COMPLETED:
            if all(s.status == StageStatus.COMPLETED.value for s in row.stages):
                row.status = StageStatus.COMPLETED.value
            else:
                row.status = StageStatus.RUNNING.value


class SqlJobStore(JobStore):
    """JobStore adapter running StateDatabase calls off the event loop"""

    def __init__(self, database: StateDatabase):
        self.database = database

    async def get_job(self, project_dir: str) -> Optional[Job]:
        return await asyncio.to_thread(self.database.get_job, project_dir)

    async def create_job(
        self,
        project_dir: str,
        video_path: str,
        subtitle_count: int,
        reference_mode: ReferenceMode,
        reference_audio_path: Optional[str] = None,
        tts_plugin_id: Optional[str] = None,
    ) -> Job:
        return await asyncio.to_thread(
            self.database.create_job,
            project_dir,
            video_path,
            subtitle_count,
            reference_mode,
            reference_audio_path,
            tts_plugin_id,
        )

    async def reset_job(self, job_id: str) -> None:
        await asyncio.to_thread(self.database.reset_job, job_id)

    async def update_stage(
        self,
        job_id: str,
        stage: Stage,
        status: StageStatus,
        progress: Optional[float] = None,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> StageState:
        return await asyncio.to_thread(
            self.database.update_stage,
            job_id,
            stage,
            status,
            progress,
            output_path,
            error,
        )


def create_database(config: dict) -> StateDatabase:
    """Create database from config"""
    state_dir = config.get("paths", {}).get("state_dir", "./state")
    return StateDatabase(Path(state_dir) / "dubstage.db")
