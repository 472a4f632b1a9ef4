import asyncio
from datetime import UTC, datetime
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
import httpx
from sqlalchemy.orm import Session, sessionmaker

from originsweep.config import Settings
from originsweep.pipeline import AnalysisRunner


logger = logging.getLogger(__name__)


def send_to_webhook(payload: dict[str, object], webhook_url: str | None, *, timeout_seconds: float = 30.0) -> dict[str, object]:
    if not webhook_url:
        logger.warning("no webhook url configured, skipping webhook send")
        return {"sent": False, "reason": "No webhook URL configured"}

    try:
        response = httpx.post(
            webhook_url,
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout_seconds,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error("webhook rejected sweep payload", extra={"status_code": exc.response.status_code})
        return {"sent": False, "error": str(exc), "status": exc.response.status_code}
    except httpx.HTTPError as exc:
        logger.error("webhook send failed", extra={"error": str(exc)})
        return {"sent": False, "error": str(exc)}

    logger.info("webhook sent", extra={"status_code": response.status_code})
    return {"sent": True, "status": response.status_code}


def run_scheduled_sweep(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    slot: datetime | None = None,
) -> None:
    slot = slot or datetime.now(UTC).replace(second=0, microsecond=0)
    runner = AnalysisRunner(settings, session_factory)
    try:
        report = asyncio.run(runner.sweep(trigger_source="scheduled", slot=slot))
    except Exception:
        logger.exception("scheduled sweep failed")
        return

    delivery = send_to_webhook(report, settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)
    summary = report["summary"]
    logger.info(
        "scheduled sweep completed",
        extra={
            "total_origins": summary["totalOrigins"],
            "successful": summary["successful"],
            "webhook_sent": delivery["sent"],
        },
    )


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone="UTC")
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_sweep,
        trigger,
        args=[settings, session_factory],
        id="origin_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        "scheduler started",
        extra={"schedule_cron": settings.schedule_cron, "webhook_configured": bool(settings.webhook_url)},
    )

    if run_now:
        run_scheduled_sweep(settings, session_factory)

    scheduler.start()
