from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class FilterRule:
    """Named predicate over a log's ``errorMessage``.

    Rules are evaluated in declared order and the first match removes the log;
    ``key`` is the counter bumped in ``ReductionStats.warnings_removed``.
    """

    name: str
    key: str
    predicate: Callable[[str], bool]

    def matches(self, error_message: object) -> bool:
        if not isinstance(error_message, str) or not error_message:
            return False
        return self.predicate(error_message)

    @classmethod
    def exact(cls, name: str, key: str) -> "FilterRule":
        return cls(name=name, key=key, predicate=lambda message: message.strip() == name)

    @classmethod
    def prefix(cls, name: str, key: str) -> "FilterRule":
        return cls(name=name, key=key, predicate=lambda message: message.strip().startswith(name))


DEFAULT_FILTER_RULES: tuple[FilterRule, ...] = (
    FilterRule.exact("SEQUENTIAL ID BREAK WARNING", "sequentialIdBreak"),
    FilterRule.exact("ENGINE HOURS HAVE CHANGED AFTER SHUT DOWN WARNING", "engineHoursAfterShutdown"),
    FilterRule.exact("ODOMETER ERROR", "odometerError"),
    FilterRule.exact("DIAGNOSTIC EVENT", "diagnosticEvent"),
    FilterRule.exact("LOCATION CHANGED ERROR", "locationChangedError"),
    FilterRule.exact("INCORRECT INTERMEDIATE PLACEMENT ERROR", "incorrectIntermediatePlacementError"),
    FilterRule.exact("ENGINE HOURS WARNING", "engineHoursWarning"),
    FilterRule.exact("NO SHUT DOWN ERROR", "noShutdownError"),
    FilterRule.exact("EXCESSIVE LOG IN WARNING", "excessiveLogInWarning"),
    FilterRule.exact("EXCESSIVE LOG OUT WARNING", "excessiveLogOutWarning"),
    FilterRule.exact("TWO IDENTICAL STATUSES ERROR", "twoIdenticalStatusesError"),
    FilterRule.exact("DRIVING ORIGIN WARNING", "drivingOriginWarning"),
    FilterRule.exact("NO DATA IN ODOMETER OR ENGINE HOURS ERROR", "noDataInOdometerOrEngineHours"),
    FilterRule.exact("LOCATION ERROR", "locationError"),
    FilterRule.exact("LOCATION DID NOT CHANGE WARNING", "locationDidNotChangeWarning"),
    FilterRule.exact("MISSING INTERMEDIATE ERROR", "missingIntermediateError"),
    FilterRule.exact("INCORRECT STATUS PLACEMENT ERROR", "incorrectStatusPlacementError"),
    # Speed messages carry the posted limit after the prefix.
    FilterRule.prefix("THE SPEED WAS MUCH HIGHER THAN THE SPEED LIMIT IN", "speedMuchHigherThanLimit"),
    FilterRule.prefix("THE SPEED WAS HIGHER THAN THE SPEED", "speedHigherThanLimit"),
    FilterRule.exact("EVENT HAS MANUAL LOCATION", "eventHasManualLocation"),
    FilterRule.exact("NO POWER UP ERROR", "noPowerUpError"),
    FilterRule.exact("UNIDENTIFIED DRIVER EVENT", "unidentifiedDriverEvent"),
)
