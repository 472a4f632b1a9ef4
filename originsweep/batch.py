import asyncio
from collections.abc import Callable, Sequence
import logging
import time

from originsweep.client import AnalysisClient, FetchError
from originsweep.schemas import BatchResult, BatchSummary, CompanyDescriptor, EntityResult


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, EntityResult, float], None]


async def fetch_company(client: AnalysisClient, origin: str, company: CompanyDescriptor) -> EntityResult:
    """Fetch one company and fold any failure into a failed ``EntityResult``."""
    try:
        data = await client.smart_analyze(origin, company.id)
    except FetchError as exc:
        return EntityResult.failure(company, str(exc), exc.response_body)
    except Exception as exc:
        logger.exception(
            "unexpected fetch error",
            extra={"origin": origin, "company_id": company.id, "company_name": company.name},
        )
        return EntityResult.failure(company, str(exc) or type(exc).__name__)
    return EntityResult.success(company, data)


class BatchFetcher:
    """Fetches every company of an origin concurrently and waits for all of them.

    ``max_concurrency`` caps in-flight requests with a semaphore; ``0`` issues
    one request per company at once. Result lists are in completion order.
    """

    def __init__(
        self,
        client: AnalysisClient,
        *,
        max_concurrency: int = 0,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.client = client
        self.max_concurrency = max(0, max_concurrency)
        self.progress = progress

    async def fetch_batch(self, origin: str, companies: Sequence[CompanyDescriptor]) -> BatchResult:
        total = len(companies)
        started = time.monotonic()
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        completed: list[EntityResult] = []

        async def run_one(company: CompanyDescriptor) -> None:
            if semaphore is None:
                result = await fetch_company(self.client, origin, company)
            else:
                async with semaphore:
                    result = await fetch_company(self.client, origin, company)
            completed.append(result)
            self._report(origin, len(completed), total, result, time.monotonic() - started)

        logger.info(
            "batch started",
            extra={"origin": origin, "companies": total, "max_concurrency": self.max_concurrency or total},
        )
        await asyncio.gather(*(run_one(company) for company in companies))

        execution_time = time.monotonic() - started
        successful = [result for result in completed if result.ok]
        failed = [result for result in completed if not result.ok]
        summary = BatchSummary(
            origin=origin,
            total_companies=total,
            successful=len(successful),
            failed=len(failed),
            execution_time=execution_time,
            average_time_per_company=execution_time / total if total else 0.0,
        )

        logger.info(
            "batch finished",
            extra={
                "origin": origin,
                "successful": summary.successful,
                "failed": summary.failed,
                "success_rate": summary.success_rate,
                "execution_time": round(execution_time, 2),
            },
        )
        return BatchResult(
            summary=summary,
            successful_results=successful,
            failed_results=failed,
            all_results=list(completed),
        )

    def _report(self, origin: str, done: int, total: int, result: EntityResult, elapsed: float) -> None:
        context = {
            "origin": origin,
            "company_id": result.company_id,
            "company_name": result.company_name,
            "progress": f"{done}/{total}",
            "elapsed_seconds": round(elapsed, 1),
        }
        if result.ok:
            logger.info("company fetched", extra=context)
        else:
            logger.warning("company fetch failed", extra={**context, "error": result.error})

        if self.progress is None:
            return
        try:
            self.progress(done, total, result, elapsed)
        except Exception:
            logger.exception("progress callback failed", extra={"origin": origin})
