from helpers import ScriptedClient, driver, unavailable
import pytest

from originsweep.batch import BatchFetcher
from originsweep.client import FetchError
from originsweep.pipeline import AnalysisPipeline
from originsweep.reduction import ResultReducer, company_key, count_logs
from originsweep.retry import RetryOrchestrator
from originsweep.schemas import AttemptRecord, BatchResult, BatchSummary, CompanyDescriptor, EntityResult


COMPANIES = [CompanyDescriptor("c1", "Alpha"), CompanyDescriptor("c2", "Bravo"), CompanyDescriptor("c3", "Charlie")]


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def orchestrator_for(client: ScriptedClient, sleep: SleepRecorder, **options: object) -> RetryOrchestrator:
    reducer = ResultReducer()
    pipeline = AnalysisPipeline(BatchFetcher(client), reducer)
    return RetryOrchestrator(
        pipeline.run_once,
        client,
        reducer,
        retry_delay_seconds=2.0,
        individual_delay_seconds=1.0,
        sleep=sleep,
        **options,
    )


def canned_batch(successes: int, failures: int) -> BatchResult:
    ok = [EntityResult.success(company, []) for company in COMPANIES[:successes]]
    bad = [EntityResult.failure(company, "boom") for company in COMPANIES[successes : successes + failures]]
    return BatchResult(
        summary=BatchSummary("HERO", successes + failures, successes, failures, 0.1, 0.05),
        successful_results=ok,
        failed_results=bad,
        all_results=ok + bad,
    )


def scripted_attempts(*outcomes: object):
    remaining = list(outcomes)

    async def attempt(origin: str, companies: list[CompanyDescriptor]) -> BatchResult:
        outcome = remaining.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return attempt


def assert_partitioned(batch: BatchResult, roster_size: int) -> None:
    successful = {company_key(result) for result in batch.successful_results}
    failed = {company_key(result) for result in batch.failed_results}
    assert successful.isdisjoint(failed)
    assert len(batch.all_results) == roster_size
    assert batch.summary.successful == len(batch.successful_results)
    assert batch.summary.failed == len(batch.failed_results)


@pytest.mark.asyncio
async def test_stops_after_first_clean_attempt() -> None:
    client = ScriptedClient({"c1": [[driver("Ann", "A")]], "c2": [[driver("Bob", "B")]], "c3": [[]]})
    sleep = SleepRecorder()

    batch = await orchestrator_for(client, sleep).run("HERO", COMPANIES, max_retries=6)

    assert batch.summary.successful == 3
    assert batch.summary.failed == 0
    assert batch.summary.retry_metadata.total_attempts == 1
    assert batch.summary.retry_metadata.individual_retry_used is False
    assert len(client.calls) == 3
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_individual_retry_recovers_remaining_failures() -> None:
    client = ScriptedClient(
        {
            "c1": [[driver("Ann", "REAL EVENT")]],
            "c2": [unavailable("c2"), [driver("Bob", "REAL EVENT", "ODOMETER ERROR")]],
            "c3": [[driver("Cid", "REAL EVENT")]],
        }
    )
    sleep = SleepRecorder()

    batch = await orchestrator_for(client, sleep).run("HERO", COMPANIES, max_retries=1)

    assert batch.summary.successful == 3
    assert batch.summary.failed == 0
    assert batch.summary.success_rate == "100.00%"
    metadata = batch.summary.retry_metadata
    assert metadata.total_attempts == 1
    assert metadata.max_retries == 1
    assert metadata.individual_retry_used is True
    assert client.calls_for("c2") == 2
    assert_partitioned(batch, 3)

    recovered = next(result for result in batch.successful_results if result.company_id == "c2")
    assert [log["errorMessage"] for log in recovered.data[0]["logs"]] == ["REAL EVENT"]


@pytest.mark.asyncio
async def test_stats_stay_consistent_after_recovery() -> None:
    client = ScriptedClient(
        {
            "c1": [unavailable("c1"), [driver("Ann", "REAL EVENT", "ODOMETER ERROR")]],
            "c2": [[driver("Bob", "REAL EVENT")]],
            "c3": [[driver("Cid", "DIAGNOSTIC EVENT")]],
        }
    )

    batch = await orchestrator_for(client, SleepRecorder()).run("HERO", COMPANIES, max_retries=1)

    stats = batch.summary.processing_stats
    assert stats.total_logs_processed == 4
    assert stats.total_logs_removed == 2
    assert stats.remaining_logs == count_logs(batch) == 2
    assert stats.warnings_removed["odometerError"] == 1
    assert stats.warnings_removed["diagnosticEvent"] == 1


@pytest.mark.asyncio
async def test_best_attempt_is_kept_and_later_errors_are_tolerated() -> None:
    first = canned_batch(successes=2, failures=1)
    worse = canned_batch(successes=1, failures=2)
    sleep = SleepRecorder()
    records: list[AttemptRecord] = []
    orchestrator = RetryOrchestrator(
        scripted_attempts(first, worse, RuntimeError("upstream down")),
        ScriptedClient({}),
        ResultReducer(),
        retry_delay_seconds=2.0,
        sleep=sleep,
    )

    batch = await orchestrator.run(
        "HERO", COMPANIES, max_retries=3, retry_individually=False, on_attempt=records.append
    )

    assert batch is first
    assert batch.summary.successful == 2
    assert batch.summary.retry_metadata.total_attempts == 3
    assert sleep.delays == [2.0, 2.0]
    assert [(record.attempt, record.successful, record.error) for record in records] == [
        (1, 2, None),
        (2, 1, None),
        (3, 0, "upstream down"),
    ]


@pytest.mark.asyncio
async def test_equal_success_count_keeps_earlier_attempt() -> None:
    first = canned_batch(successes=1, failures=2)
    second = canned_batch(successes=1, failures=2)
    orchestrator = RetryOrchestrator(
        scripted_attempts(first, second), ScriptedClient({}), ResultReducer(), sleep=SleepRecorder()
    )

    batch = await orchestrator.run("HERO", COMPANIES, max_retries=2, retry_individually=False)

    assert batch is first


@pytest.mark.asyncio
async def test_first_attempt_error_propagates() -> None:
    orchestrator = RetryOrchestrator(
        scripted_attempts(RuntimeError("roster endpoint exploded")),
        ScriptedClient({}),
        ResultReducer(),
        sleep=SleepRecorder(),
    )

    with pytest.raises(RuntimeError, match="roster endpoint exploded"):
        await orchestrator.run("HERO", COMPANIES, max_retries=3)


@pytest.mark.asyncio
async def test_rejects_non_positive_max_retries() -> None:
    orchestrator = RetryOrchestrator(scripted_attempts(), ScriptedClient({}), ResultReducer())

    with pytest.raises(ValueError):
        await orchestrator.run("HERO", COMPANIES, max_retries=0)


@pytest.mark.asyncio
async def test_still_failing_company_reports_latest_error() -> None:
    client = ScriptedClient(
        {
            "c1": [[driver("Ann", "A")]],
            "c2": [unavailable("c2"), FetchError("timeout after 120.0s fetching c2")],
            "c3": [unavailable("c3"), [driver("Cid", "C")]],
        }
    )
    sleep = SleepRecorder()

    batch = await orchestrator_for(client, sleep).run("HERO", COMPANIES, max_retries=1)

    assert batch.summary.successful == 2
    assert batch.summary.failed == 1
    assert batch.failed_results[0].company_id == "c2"
    assert batch.failed_results[0].error == "timeout after 120.0s fetching c2"
    assert batch.summary.retry_metadata.individual_retry_used is True
    assert sleep.delays == [1.0]
    assert_partitioned(batch, 3)


@pytest.mark.asyncio
async def test_individual_phase_can_be_disabled() -> None:
    client = ScriptedClient({"c1": [[]], "c2": [unavailable("c2")], "c3": [[]]})
    sleep = SleepRecorder()

    batch = await orchestrator_for(client, sleep).run("HERO", COMPANIES, max_retries=2, retry_individually=False)

    assert batch.summary.failed == 1
    assert batch.summary.retry_metadata.individual_retry_used is False
    assert batch.summary.retry_metadata.total_attempts == 2
    assert client.calls_for("c2") == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_roster_order_is_restored_when_requested() -> None:
    script = {"c1": [unavailable("c1"), [driver("Ann", "A")]], "c2": [[driver("Bob", "B")]], "c3": [[driver("Cid", "C")]]}

    unordered = await orchestrator_for(ScriptedClient(script), SleepRecorder()).run("HERO", COMPANIES, max_retries=1)
    ordered = await orchestrator_for(ScriptedClient(script), SleepRecorder(), preserve_roster_order=True).run(
        "HERO", COMPANIES, max_retries=1
    )

    assert [result.company_id for result in unordered.successful_results] == ["c2", "c3", "c1"]
    assert [result.company_id for result in ordered.successful_results] == ["c1", "c2", "c3"]
    assert [result.company_id for result in ordered.all_results] == ["c1", "c2", "c3"]


@pytest.mark.asyncio
async def test_individual_retry_skips_companies_already_successful() -> None:
    alpha, bravo = COMPANIES[0], COMPANIES[1]
    ok = [EntityResult.success(alpha, []), EntityResult.success(bravo, [])]
    stale = EntityResult.failure(bravo, "timed out earlier")
    best = BatchResult(
        summary=BatchSummary("HERO", 3, 2, 1, 0.1, 0.05),
        successful_results=ok,
        failed_results=[stale],
        all_results=[*ok, stale],
    )
    client = ScriptedClient({"c2": [[driver("Bob", "B")]]})
    orchestrator = RetryOrchestrator(scripted_attempts(best), client, ResultReducer(), sleep=SleepRecorder())

    batch = await orchestrator.run("HERO", COMPANIES[:2], max_retries=1)

    assert client.calls_for("c2") == 0
    assert batch.failed_results == []
    assert [result.company_id for result in batch.successful_results] == ["c1", "c2"]
    assert batch.summary.failed == 0
    assert batch.summary.total_companies == 2
