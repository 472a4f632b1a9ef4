import asyncio
from collections.abc import Awaitable, Callable, Sequence
import logging
import time

from originsweep.batch import fetch_company
from originsweep.client import AnalysisClient
from originsweep.reduction import ResultReducer, carry_forward, company_key, dedupe_companies
from originsweep.schemas import AttemptRecord, BatchResult, CompanyDescriptor, EntityResult, RetryMetadata


logger = logging.getLogger(__name__)

AttemptFn = Callable[[str, Sequence[CompanyDescriptor]], Awaitable[BatchResult]]
AttemptListener = Callable[[AttemptRecord], None]


class RetryOrchestrator:
    """Drives an origin to a best-effort complete result.

    Phase one re-runs the whole batch until nothing fails or ``max_retries``
    attempts are spent, keeping the attempt with the most successes. Phase two
    retries the remaining failures one company at a time and re-reduces the
    merged batch when anything was recovered.
    """

    def __init__(
        self,
        attempt_fn: AttemptFn,
        client: AnalysisClient,
        reducer: ResultReducer,
        *,
        retry_delay_seconds: float = 2.0,
        individual_delay_seconds: float = 1.0,
        preserve_roster_order: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.attempt_fn = attempt_fn
        self.client = client
        self.reducer = reducer
        self.retry_delay_seconds = retry_delay_seconds
        self.individual_delay_seconds = individual_delay_seconds
        self.preserve_roster_order = preserve_roster_order
        self.sleep = sleep

    async def run(
        self,
        origin: str,
        companies: Sequence[CompanyDescriptor],
        *,
        max_retries: int = 6,
        retry_individually: bool = True,
        on_attempt: AttemptListener | None = None,
    ) -> BatchResult:
        if max_retries < 1:
            raise ValueError("max_retries must be a positive integer")

        started = time.monotonic()
        best: BatchResult | None = None
        attempt = 0

        while attempt < max_retries:
            attempt += 1
            attempt_started = time.monotonic()
            try:
                result = await self.attempt_fn(origin, companies)
            except Exception as exc:
                self._notify(
                    on_attempt,
                    AttemptRecord(attempt, "batch", 0, 0, time.monotonic() - attempt_started, str(exc)),
                )
                if best is None:
                    logger.exception("first batch attempt failed", extra={"origin": origin, "attempt": attempt})
                    raise
                logger.warning(
                    "batch attempt failed, keeping best result",
                    extra={"origin": origin, "attempt": attempt, "error": str(exc)},
                )
            else:
                self._notify(
                    on_attempt,
                    AttemptRecord(
                        attempt,
                        "batch",
                        result.summary.successful,
                        result.summary.failed,
                        time.monotonic() - attempt_started,
                    ),
                )
                # Best-so-far never regresses: ties keep the earlier result.
                if best is None or result.summary.successful > best.summary.successful:
                    best = result

                logger.info(
                    "batch attempt finished",
                    extra={
                        "origin": origin,
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "successful": result.summary.successful,
                        "failed": result.summary.failed,
                    },
                )
                if result.summary.failed == 0:
                    break

            if attempt < max_retries:
                await self.sleep(self.retry_delay_seconds)

        if best is None:
            raise RuntimeError(f"no batch attempt produced a result for origin {origin}")

        individual_retry_used = False
        if retry_individually and best.failed_results:
            individual_retry_used = True
            await self._retry_individually(origin, best, attempt, on_attempt)

        if self.preserve_roster_order:
            self._sort_by_roster(best, companies)

        best.summary.retry_metadata = RetryMetadata(
            total_attempts=attempt,
            max_retries=max_retries,
            individual_retry_used=individual_retry_used,
            total_execution_time=time.monotonic() - started,
        )
        self._log_outcome(origin, best)
        return best

    async def _retry_individually(
        self,
        origin: str,
        best: BatchResult,
        attempt: int,
        on_attempt: AttemptListener | None,
    ) -> None:
        phase_started = time.monotonic()
        succeeded = {company_key(result) for result in best.successful_results}
        pending = [
            failure
            for failure in dedupe_companies(best.failed_results)
            if company_key(failure) is None or company_key(failure) not in succeeded
        ]
        logger.info("individual retry started", extra={"origin": origin, "companies": len(pending)})

        recovered: list[EntityResult] = []
        still_failed: list[EntityResult] = []
        for index, failure in enumerate(pending):
            result = await fetch_company(self.client, origin, failure.descriptor())
            if result.ok:
                recovered.append(result)
                logger.info(
                    "company recovered",
                    extra={"origin": origin, "company_id": result.company_id, "company_name": result.company_name},
                )
            else:
                still_failed.append(result)
                logger.warning(
                    "company still failing",
                    extra={
                        "origin": origin,
                        "company_id": result.company_id,
                        "company_name": result.company_name,
                        "error": result.error,
                    },
                )
            if index < len(pending) - 1:
                await self.sleep(self.individual_delay_seconds)

        best.successful_results.extend(recovered)
        best.failed_results = still_failed
        best.all_results = best.successful_results + best.failed_results

        if recovered:
            # Recovered companies were never reduced; run the whole merged batch again.
            previous = best.summary.processing_stats
            stats = self.reducer.reduce(best)
            if previous is not None:
                carry_forward(previous, stats)
        best.recount()

        self._notify(
            on_attempt,
            AttemptRecord(attempt, "individual", len(recovered), len(still_failed), time.monotonic() - phase_started),
        )

    @staticmethod
    def _sort_by_roster(batch: BatchResult, companies: Sequence[CompanyDescriptor]) -> None:
        position = {company.id: index for index, company in enumerate(companies)}

        def roster_index(result: EntityResult) -> int:
            return position.get(result.company_id or "", len(position))

        batch.successful_results.sort(key=roster_index)
        batch.failed_results.sort(key=roster_index)
        batch.all_results.sort(key=roster_index)

    @staticmethod
    def _notify(listener: AttemptListener | None, record: AttemptRecord) -> None:
        if listener is None:
            return
        try:
            listener(record)
        except Exception:
            logger.exception("attempt listener failed", extra={"attempt": record.attempt, "phase": record.phase})

    @staticmethod
    def _log_outcome(origin: str, batch: BatchResult) -> None:
        summary = batch.summary
        logger.info(
            "origin analysis finished",
            extra={
                "origin": origin,
                "total_companies": summary.total_companies,
                "successful": summary.successful,
                "failed": summary.failed,
                "success_rate": summary.success_rate,
                "total_attempts": summary.retry_metadata.total_attempts if summary.retry_metadata else None,
            },
        )
        for failure in batch.failed_results:
            logger.warning(
                "company failed after all retries",
                extra={
                    "origin": origin,
                    "company_id": failure.company_id,
                    "company_name": failure.company_name,
                    "error": failure.error,
                },
            )
