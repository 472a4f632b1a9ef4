from datetime import UTC, datetime

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from originsweep.db_models import AnalysisRun, Base, BatchAttempt, FailedCompany
from originsweep.schemas import AttemptRecord, BatchResult


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def open_ledger(database_url: str) -> sessionmaker[Session]:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, future=True, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_run_by_key(db: Session, run_key: str) -> AnalysisRun | None:
    stmt = select(AnalysisRun).where(AnalysisRun.run_key == run_key)
    return db.execute(stmt).scalar_one_or_none()


def create_or_get_run(db: Session, *, run_key: str, origin: str, trigger_source: str) -> tuple[AnalysisRun, bool]:
    run = AnalysisRun(run_key=run_key, origin=origin, trigger_source=trigger_source, status="queued")
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Scheduled sweeps key runs by cron slot, so a repeated slot lands here.
        db.rollback()
        existing = get_run_by_key(db, run_key)
        if existing:
            return existing, False
        raise

    db.refresh(run)
    return run, True


def reset_failed_run_state(db: Session, run: AnalysisRun) -> None:
    db.execute(delete(BatchAttempt).where(BatchAttempt.run_id == run.id))
    db.execute(delete(FailedCompany).where(FailedCompany.run_id == run.id))

    run.status = "queued"
    run.error = None
    run.completed_at = None
    run.total_companies = 0
    run.successful = 0
    run.failed = 0
    run.total_attempts = 0
    run.logs_processed = 0
    run.logs_removed = 0
    run.output_path = None
    db.commit()


def mark_run_running(db: Session, run: AnalysisRun) -> None:
    run.status = "running"
    run.started_at = utc_now()
    run.error = None
    db.commit()


def mark_run_succeeded(db: Session, run: AnalysisRun, *, result: BatchResult, output_path: str | None) -> None:
    summary = result.summary
    run.status = "succeeded"
    run.total_companies = summary.total_companies
    run.successful = summary.successful
    run.failed = summary.failed
    run.total_attempts = summary.retry_metadata.total_attempts if summary.retry_metadata else 0
    if summary.processing_stats is not None:
        run.logs_processed = summary.processing_stats.total_logs_processed
        run.logs_removed = summary.processing_stats.total_logs_removed
    run.output_path = output_path
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(db: Session, run: AnalysisRun, *, error: str) -> None:
    run.status = "failed"
    run.error = error
    run.completed_at = utc_now()
    db.commit()


def store_attempt(db: Session, *, run_id: int, record: AttemptRecord) -> BatchAttempt:
    attempt = BatchAttempt(
        run_id=run_id,
        phase=record.phase,
        attempt=record.attempt,
        successful=record.successful,
        failed=record.failed,
        duration_ms=record.duration_seconds * 1000,
        error=record.error,
    )
    db.add(attempt)
    db.commit()
    return attempt


def store_failed_companies(db: Session, *, run_id: int, result: BatchResult) -> None:
    for failure in result.failed_results:
        db.add(
            FailedCompany(
                run_id=run_id,
                company_id=failure.company_id,
                company_name=failure.company_name,
                error=failure.error,
            )
        )
    db.commit()
