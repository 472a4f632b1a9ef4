from collections.abc import Sequence
from datetime import UTC, datetime
import logging

from originsweep.filters import DEFAULT_FILTER_RULES, FilterRule
from originsweep.schemas import BatchResult, EntityResult, ReductionStats


logger = logging.getLogger(__name__)

RESULT_LISTS = ("successful_results", "failed_results", "all_results")


def _key_part(value: object) -> str | None:
    # None and "" both mean "absent" so blank ids never collapse distinct records.
    if value is None:
        return None
    text = str(value)
    return text or None


def company_key(result: EntityResult) -> str | None:
    """Identity of a company record: ``company_id``, falling back to ``company_name``."""
    return _key_part(result.company_id) or _key_part(result.company_name)


def driver_key(driver: dict[str, object]) -> str | None:
    """Identity of a driver within one company: ``driverName``, falling back to ``driverId``."""
    return _key_part(driver.get("driverName")) or _key_part(driver.get("driverId"))


def dedupe_companies(results: list[EntityResult]) -> list[EntityResult]:
    seen: set[str] = set()
    unique: list[EntityResult] = []
    for result in results:
        key = company_key(result)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        unique.append(result)
    return unique


def dedupe_drivers(results: list[EntityResult]) -> int:
    merged = 0
    for result in results:
        drivers = result.data
        if not isinstance(drivers, list):
            continue

        retained: dict[str, dict[str, object]] = {}
        unique: list[object] = []
        for driver in drivers:
            key = driver_key(driver) if isinstance(driver, dict) else None
            if key is None:
                unique.append(driver)
                continue

            existing = retained.get(key)
            if existing is None:
                retained[key] = driver
                unique.append(driver)
                continue

            existing_logs = existing.get("logs")
            duplicate_logs = driver.get("logs")
            if isinstance(existing_logs, list) and isinstance(duplicate_logs, list):
                existing["logs"] = existing_logs + duplicate_logs
            merged += 1

        result.data = unique
    return merged


def filter_logs(
    results: list[EntityResult],
    rules: Sequence[FilterRule],
    stats: ReductionStats,
    visited: set[int] | None = None,
) -> None:
    visited = set() if visited is None else visited
    for result in results:
        # The result lists share company objects; filter each object once per pass.
        if id(result) in visited:
            continue
        visited.add(id(result))

        drivers = result.data
        if not isinstance(drivers, list):
            continue
        stats.companies_processed += 1

        for driver in drivers:
            if not isinstance(driver, dict) or not isinstance(driver.get("logs"), list):
                continue
            stats.drivers_processed += 1

            kept: list[object] = []
            for log in driver["logs"]:
                stats.total_logs_processed += 1
                message = log.get("errorMessage") if isinstance(log, dict) else None
                rule = next((rule for rule in rules if rule.matches(message)), None)
                if rule is None:
                    kept.append(log)
                    continue
                stats.warnings_removed[rule.key] = stats.warnings_removed.get(rule.key, 0) + 1
                stats.total_logs_removed += 1
            driver["logs"] = kept


def prune_empty_drivers(results: list[EntityResult]) -> int:
    pruned = 0
    for result in results:
        drivers = result.data
        if not isinstance(drivers, list):
            continue
        kept = [
            driver
            for driver in drivers
            if isinstance(driver, dict) and isinstance(driver.get("logs"), list) and driver["logs"]
        ]
        pruned += len(drivers) - len(kept)
        result.data = kept
    return pruned


def carry_forward(previous: ReductionStats, current: ReductionStats) -> ReductionStats:
    """Fold removals of an earlier pass into ``current``.

    Logs that survived the earlier pass are counted again by the later one, so
    only the removed ones are added to keep ``remaining_logs`` equal to what the
    batch still holds.
    """

    current.total_logs_processed += previous.total_logs_removed
    current.total_logs_removed += previous.total_logs_removed
    for key, count in previous.warnings_removed.items():
        current.warnings_removed[key] = current.warnings_removed.get(key, 0) + count
    return current


def count_logs(batch: BatchResult) -> int:
    visited: set[int] = set()
    total = 0
    for name in RESULT_LISTS:
        for result in getattr(batch, name):
            if id(result) in visited or not isinstance(result.data, list):
                continue
            visited.add(id(result))
            total += sum(
                len(driver["logs"])
                for driver in result.data
                if isinstance(driver, dict) and isinstance(driver.get("logs"), list)
            )
    return total


class ResultReducer:
    def __init__(self, rules: Sequence[FilterRule] = DEFAULT_FILTER_RULES) -> None:
        self.rules: tuple[FilterRule, ...] = tuple(rules)

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self.rules]

    def new_stats(self) -> ReductionStats:
        return ReductionStats(warnings_removed={rule.key: 0 for rule in self.rules})

    def reduce(self, batch: BatchResult, stats: ReductionStats | None = None) -> ReductionStats:
        """Deduplicate, filter and prune ``batch`` in place.

        The batch itself is the result: its lists are replaced and its summary
        annotated, so callers keep reading ``batch`` afterwards. The return value
        is only the stats object, also attached as ``summary.processing_stats``.
        Counters are added onto ``stats`` when one is given.
        """

        if stats is None:
            stats = self.new_stats()

        before = sum(len(getattr(batch, name)) for name in RESULT_LISTS)
        for name in RESULT_LISTS:
            setattr(batch, name, dedupe_companies(getattr(batch, name)))
        duplicate_companies = before - sum(len(getattr(batch, name)) for name in RESULT_LISTS)

        duplicate_drivers = sum(dedupe_drivers(getattr(batch, name)) for name in RESULT_LISTS)

        visited: set[int] = set()
        for name in RESULT_LISTS:
            filter_logs(getattr(batch, name), self.rules, stats, visited)

        empty_drivers = sum(prune_empty_drivers(getattr(batch, name)) for name in RESULT_LISTS)

        batch.summary.processed_at = datetime.now(UTC).isoformat()
        batch.summary.filters_applied = self.rule_names
        batch.summary.processing_stats = stats

        logger.info(
            "batch reduced",
            extra={
                "origin": batch.summary.origin,
                "duplicate_companies": duplicate_companies,
                "duplicate_drivers": duplicate_drivers,
                "empty_drivers": empty_drivers,
                "logs_processed": stats.total_logs_processed,
                "logs_removed": stats.total_logs_removed,
            },
        )
        return stats
