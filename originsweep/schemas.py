from dataclasses import dataclass, field
import logging
from typing import Any


logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"


@dataclass(frozen=True)
class CompanyDescriptor:
    id: str
    name: str


@dataclass
class EntityResult:
    """Outcome of one company fetch.

    ``data`` holds the driver records returned by the monitoring API for a
    success; ``error`` and ``error_details`` are only set for failures.
    """

    status: str
    company_id: str | None
    company_name: str | None
    data: Any = None
    error: str | None = None
    error_details: Any = None

    @classmethod
    def success(cls, company: CompanyDescriptor, data: Any) -> "EntityResult":
        return cls(status=SUCCESS, company_id=company.id, company_name=company.name, data=data)

    @classmethod
    def failure(cls, company: CompanyDescriptor, error: str, error_details: Any = None) -> "EntityResult":
        return cls(
            status=FAILED,
            company_id=company.id,
            company_name=company.name,
            error=error,
            error_details=error_details,
        )

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    def descriptor(self) -> CompanyDescriptor:
        return CompanyDescriptor(id=self.company_id or "", name=self.company_name or "")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "companyName": self.company_name,
            "companyId": self.company_id,
        }
        if self.ok:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
            payload["errorDetails"] = self.error_details
            if self.data is not None:
                payload["data"] = self.data
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "EntityResult":
        return cls(
            status=str(raw.get("status", FAILED)),
            company_id=raw.get("companyId"),
            company_name=raw.get("companyName"),
            data=raw.get("data"),
            error=raw.get("error"),
            error_details=raw.get("errorDetails"),
        )


@dataclass
class ReductionStats:
    total_logs_processed: int = 0
    total_logs_removed: int = 0
    warnings_removed: dict[str, int] = field(default_factory=dict)
    companies_processed: int = 0
    drivers_processed: int = 0

    @property
    def remaining_logs(self) -> int:
        return self.total_logs_processed - self.total_logs_removed

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalLogsProcessed": self.total_logs_processed,
            "totalLogsRemoved": self.total_logs_removed,
            "remainingLogs": self.remaining_logs,
            "companiesProcessed": self.companies_processed,
            "driversProcessed": self.drivers_processed,
            "warningsRemoved": dict(self.warnings_removed),
        }


@dataclass(frozen=True)
class RetryMetadata:
    total_attempts: int
    max_retries: int
    individual_retry_used: bool
    total_execution_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAttempts": self.total_attempts,
            "maxRetries": self.max_retries,
            "individualRetryUsed": self.individual_retry_used,
            "totalExecutionTime": _seconds(self.total_execution_time),
        }


def format_rate(successful: int, total: int) -> str:
    if total <= 0:
        return "0.00%"
    return f"{successful / total * 100:.2f}%"


def _seconds(value: float) -> str:
    return f"{value:.2f}s"


def _parse_seconds(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).rstrip("s"))
    except ValueError:
        return 0.0


def _parse_results(raw: dict[str, Any], list_name: str) -> list[EntityResult]:
    results: list[EntityResult] = []
    for index, item in enumerate(raw.get(list_name) or []):
        if not isinstance(item, dict):
            logger.warning(
                "skipping malformed saved result",
                extra={"result_list": list_name, "position": index, "item_type": type(item).__name__},
            )
            continue
        results.append(EntityResult.from_dict(item))
    return results


@dataclass
class BatchSummary:
    origin: str
    total_companies: int
    successful: int
    failed: int
    execution_time: float
    average_time_per_company: float
    processed_at: str | None = None
    filters_applied: list[str] = field(default_factory=list)
    processing_stats: ReductionStats | None = None
    pipeline_execution_time: float | None = None
    pipeline_completed: str | None = None
    retry_metadata: RetryMetadata | None = None

    @property
    def success_rate(self) -> str:
        return format_rate(self.successful, self.total_companies)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "origin": self.origin,
            "totalCompanies": self.total_companies,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "executionTime": _seconds(self.execution_time),
            "averageTimePerCompany": _seconds(self.average_time_per_company),
        }
        if self.processed_at is not None:
            payload["processedAt"] = self.processed_at
            payload["filtersApplied"] = list(self.filters_applied)
        if self.processing_stats is not None:
            payload["processingStats"] = self.processing_stats.to_dict()
        if self.pipeline_execution_time is not None:
            payload["pipelineExecutionTime"] = _seconds(self.pipeline_execution_time)
            payload["pipelineCompleted"] = self.pipeline_completed
        if self.retry_metadata is not None:
            payload["retryMetadata"] = self.retry_metadata.to_dict()
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "BatchSummary":
        # Only the fetch-level fields are read back; reduction output is recomputed.
        return cls(
            origin=str(raw.get("origin", "")),
            total_companies=int(raw.get("totalCompanies", 0)),
            successful=int(raw.get("successful", 0)),
            failed=int(raw.get("failed", 0)),
            execution_time=_parse_seconds(raw.get("executionTime")),
            average_time_per_company=_parse_seconds(raw.get("averageTimePerCompany")),
        )


@dataclass
class BatchResult:
    summary: BatchSummary
    successful_results: list[EntityResult] = field(default_factory=list)
    failed_results: list[EntityResult] = field(default_factory=list)
    all_results: list[EntityResult] = field(default_factory=list)

    def recount(self) -> None:
        self.summary.successful = len(self.successful_results)
        self.summary.failed = len(self.failed_results)
        self.summary.total_companies = len(self.all_results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "successfulResults": [result.to_dict() for result in self.successful_results],
            "failedResults": [result.to_dict() for result in self.failed_results],
            "allResults": [result.to_dict() for result in self.all_results],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "BatchResult":
        successful = _parse_results(raw, "successfulResults")
        failed = _parse_results(raw, "failedResults")
        # Saved files repeat the same companies in allResults; share the objects so a
        # reduction pass touches each company once.
        by_key: dict[tuple, EntityResult] = {}
        for item in successful + failed:
            by_key.setdefault((item.status, item.company_id, item.company_name), item)
        all_results = [
            by_key.get((parsed.status, parsed.company_id, parsed.company_name), parsed)
            for parsed in _parse_results(raw, "allResults")
        ]
        return cls(
            summary=BatchSummary.from_dict(raw.get("summary") or {}),
            successful_results=successful,
            failed_results=failed,
            all_results=all_results,
        )


@dataclass(frozen=True)
class OriginRoster:
    origin: str
    companies_count: int
    companies: list[CompanyDescriptor]


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    phase: str
    successful: int
    failed: int
    duration_seconds: float
    error: str | None = None


@dataclass(frozen=True)
class RunOutcome:
    run_id: int
    run_key: str
    origin: str
    trigger_source: str
    status: str
    total_companies: int
    successful: int
    failed: int
    total_attempts: int
    output_path: str | None
    reused_existing_run: bool
    error: str | None = None
    result: BatchResult | None = None
    raw_output_paths: tuple[str, ...] = ()
