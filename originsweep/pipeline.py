import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
from pathlib import Path
import time

from sqlalchemy.orm import Session, sessionmaker

from originsweep.batch import BatchFetcher
from originsweep.client import AnalysisClient, SmartAnalyzeClient
from originsweep.config import Settings
from originsweep.db_models import AnalysisRun
from originsweep.outputs import complete_result_path, raw_result_path, save_batch
from originsweep.reduction import ResultReducer
from originsweep.retry import RetryOrchestrator
from originsweep.roster import Roster
from originsweep.run_store import (
    create_or_get_run,
    mark_run_failed,
    mark_run_running,
    mark_run_succeeded,
    reset_failed_run_state,
    store_attempt,
    store_failed_companies,
)
from originsweep.schemas import BatchResult, CompanyDescriptor, RunOutcome


logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """One analysis attempt: fetch every company of an origin, then reduce.

    With ``raw_output_dir`` set, each attempt's unreduced batch is also written
    there as ``{origin}_smart_analyze_<timestamp>.json``, the input format of
    the ``reduce`` command.
    """

    def __init__(
        self,
        fetcher: BatchFetcher,
        reducer: ResultReducer,
        *,
        raw_output_dir: str | Path | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.reducer = reducer
        self.raw_output_dir = raw_output_dir
        self.raw_paths: list[str] = []

    async def run_once(self, origin: str, companies: Sequence[CompanyDescriptor]) -> BatchResult:
        started = time.monotonic()
        batch = await self.fetcher.fetch_batch(origin, companies)
        if self.raw_output_dir is not None:
            saved = save_batch(raw_result_path(self.raw_output_dir, origin), batch)
            if saved is not None:
                self.raw_paths.append(saved)
        self.reducer.reduce(batch)
        batch.summary.pipeline_execution_time = time.monotonic() - started
        batch.summary.pipeline_completed = datetime.now(UTC).isoformat()
        return batch


def default_run_key(origin: str, trigger_source: str = "manual") -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    return f"{trigger_source}-{origin}-{stamp}"


def slot_run_key(origin: str, slot: datetime, trigger_source: str = "scheduled") -> str:
    """Run key shared by every run of ``origin`` in the same cron minute."""
    return f"{trigger_source}-{origin}-{slot.strftime('%Y%m%dT%H%M')}"


class AnalysisRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        client: AnalysisClient | None = None,
        roster: Roster | None = None,
        reducer: ResultReducer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.client = client
        self._roster = roster
        self.reducer = reducer or ResultReducer()
        self.sleep = sleep

    @property
    def roster(self) -> Roster:
        if self._roster is None:
            self._roster = Roster.from_file(self.settings.roster_path)
        return self._roster

    async def run(
        self,
        *,
        origin: str,
        run_key: str | None = None,
        trigger_source: str = "manual",
        max_retries: int | None = None,
        retry_individually: bool | None = None,
        save: bool = True,
        save_raw: bool = False,
    ) -> RunOutcome:
        run_key = run_key or default_run_key(origin, trigger_source)
        max_retries = self.settings.max_retries if max_retries is None else max_retries
        if retry_individually is None:
            retry_individually = self.settings.retry_failed_individually

        with self.session_factory() as db:
            run, created = create_or_get_run(db, run_key=run_key, origin=origin, trigger_source=trigger_source)
            if not created:
                if run.status == "failed":
                    logger.info("retrying previously failed run", extra={"run_key": run_key})
                    reset_failed_run_state(db, run)
                else:
                    logger.info("existing run reused", extra={"run_key": run_key, "status": run.status})
                    return self._outcome_from_run(run, reused_existing_run=True)

            mark_run_running(db, run)
            try:
                companies = self.roster.companies_for(origin)
                async with self._client() as client:
                    pipeline = self._pipeline(client, save_raw=save_raw)
                    result = await self._orchestrator(client, pipeline).run(
                        origin,
                        companies,
                        max_retries=max_retries,
                        retry_individually=retry_individually,
                        on_attempt=lambda record: store_attempt(db, run_id=run.id, record=record),
                    )

                output_path = None
                if save:
                    output_path = save_batch(complete_result_path(self.settings.output_dir, origin), result)

                store_failed_companies(db, run_id=run.id, result=result)
                mark_run_succeeded(db, run, result=result, output_path=output_path)
            except Exception as exc:
                db.rollback()
                mark_run_failed(db, run, error=f"{type(exc).__name__}: {exc}")
                logger.exception("origin analysis run failed", extra={"run_key": run_key, "origin": origin})
                return self._outcome_from_run(run, reused_existing_run=False)

            return self._outcome_from_run(
                run,
                reused_existing_run=False,
                result=result,
                raw_output_paths=pipeline.raw_paths,
            )

    async def sweep(
        self,
        *,
        trigger_source: str = "manual",
        save: bool = True,
        slot: datetime | None = None,
    ) -> dict[str, object]:
        """Analyze every roster origin one after another and build the sweep report.

        With ``slot`` set, every origin's run key is derived from it, so a sweep
        fired twice for the same cron slot reuses the runs already recorded.
        """
        started = time.monotonic()
        origins = self.roster.origin_names()
        results: list[dict[str, object]] = []

        for index, origin in enumerate(origins):
            logger.info("sweep processing origin", extra={"origin": origin, "position": f"{index + 1}/{len(origins)}"})
            run_key = slot_run_key(origin, slot, trigger_source) if slot is not None else None
            outcome = await self.run(origin=origin, run_key=run_key, trigger_source=trigger_source, save=save)
            entry: dict[str, object] = {
                "origin": origin,
                "success": outcome.status == "succeeded",
                "timestamp": datetime.now(UTC).isoformat(),
            }
            if outcome.result is not None:
                entry["data"] = outcome.result.to_dict()
            elif outcome.reused_existing_run:
                entry["reusedRunKey"] = outcome.run_key
            else:
                entry["error"] = outcome.error
            results.append(entry)

            if index < len(origins) - 1:
                await self.sleep(self.settings.inter_origin_delay_seconds)

        successful = sum(1 for entry in results if entry["success"])
        summary = {
            "totalOrigins": len(origins),
            "successful": successful,
            "failed": len(results) - successful,
            "executionTime": f"{time.monotonic() - started:.2f}s",
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.info("sweep completed", extra={"total_origins": len(origins), "successful": successful})
        return {"summary": summary, "results": results}

    def _pipeline(self, client: AnalysisClient, *, save_raw: bool) -> AnalysisPipeline:
        fetcher = BatchFetcher(client, max_concurrency=self.settings.max_concurrency)
        raw_output_dir = self.settings.output_dir if save_raw else None
        return AnalysisPipeline(fetcher, self.reducer, raw_output_dir=raw_output_dir)

    def _orchestrator(self, client: AnalysisClient, pipeline: AnalysisPipeline) -> RetryOrchestrator:
        return RetryOrchestrator(
            pipeline.run_once,
            client,
            self.reducer,
            retry_delay_seconds=self.settings.retry_delay_seconds,
            individual_delay_seconds=self.settings.individual_retry_delay_seconds,
            preserve_roster_order=self.settings.preserve_roster_order,
            sleep=self.sleep,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[AnalysisClient]:
        if self.client is not None:
            yield self.client
            return
        async with SmartAnalyzeClient.from_settings(self.settings) as client:
            yield client

    def _outcome_from_run(
        self,
        run: AnalysisRun,
        *,
        reused_existing_run: bool,
        result: BatchResult | None = None,
        raw_output_paths: Sequence[str] = (),
    ) -> RunOutcome:
        return RunOutcome(
            run_id=run.id,
            run_key=run.run_key,
            origin=run.origin,
            trigger_source=run.trigger_source,
            status=run.status,
            total_companies=run.total_companies,
            successful=run.successful,
            failed=run.failed,
            total_attempts=run.total_attempts,
            output_path=run.output_path,
            reused_existing_run=reused_existing_run,
            error=run.error,
            result=result,
            raw_output_paths=tuple(raw_output_paths),
        )
