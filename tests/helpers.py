import asyncio
import copy
import json
from pathlib import Path

from originsweep.client import FetchError


def driver(name: str, *messages: str, driver_id: str | None = None) -> dict[str, object]:
    return {
        "driverId": driver_id or f"id-{name}",
        "driverName": name,
        "logs": [{"errorMessage": message} for message in messages],
    }


class ScriptedClient:
    """Fake smart-analyze client; each company id maps to outcomes served in order.

    The last outcome repeats once the script runs out. Exceptions are raised,
    anything else is returned as the payload.
    """

    def __init__(self, script: dict[str, list[object]]) -> None:
        self.script = {company_id: list(outcomes) for company_id, outcomes in script.items()}
        self.calls: list[tuple[str, str]] = []

    async def smart_analyze(self, origin: str, company_id: str) -> object:
        self.calls.append((origin, company_id))
        await asyncio.sleep(0)
        outcomes = self.script[company_id]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return copy.deepcopy(outcome)

    def calls_for(self, company_id: str) -> int:
        return sum(1 for _, called in self.calls if called == company_id)


async def no_sleep(_seconds: float) -> None:
    return None


def unavailable(company_id: str) -> FetchError:
    return FetchError(
        "Request failed with status code 503",
        status_code=503,
        response_body={"message": f"{company_id} unavailable"},
    )


def write_roster(path: Path, origins: dict[str, list[tuple[str, str]]]) -> Path:
    payload = {
        "results": [
            {
                "origin": origin,
                "companies": [{"id": company_id, "name": name} for company_id, name in companies],
                "companiesCount": len(companies),
            }
            for origin, companies in origins.items()
        ]
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path
