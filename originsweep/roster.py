import json
from pathlib import Path

from originsweep.schemas import CompanyDescriptor, OriginRoster


class RosterError(RuntimeError):
    pass


class OriginNotFoundError(LookupError):
    def __init__(self, origin: str, available: list[str]) -> None:
        super().__init__(f'Origin "{origin}" not found. Available origins: {", ".join(available)}')
        self.origin = origin
        self.available = available


def load_roster(path: Path) -> list[OriginRoster]:
    if not path.exists():
        raise RosterError(f"roster file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as infile:
            payload = json.load(infile)
    except json.JSONDecodeError as exc:
        raise RosterError(f"roster file is not valid JSON: {path}") from exc

    entries = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        raise RosterError(f"roster file has no 'results' list: {path}")

    rosters: list[OriginRoster] = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("origin"):
            continue
        companies = [
            CompanyDescriptor(id=str(company.get("id", "")), name=str(company.get("name", "")))
            for company in entry.get("companies") or []
            if isinstance(company, dict)
        ]
        rosters.append(
            OriginRoster(
                origin=str(entry["origin"]),
                companies_count=int(entry.get("companiesCount", len(companies))),
                companies=companies,
            )
        )
    return rosters


class Roster:
    """Read-once view of the per-origin company lists."""

    def __init__(self, origins: list[OriginRoster]) -> None:
        self._origins = {entry.origin: entry for entry in origins}

    @classmethod
    def from_file(cls, path: str | Path) -> "Roster":
        return cls(load_roster(Path(path)))

    def available_origins(self) -> list[OriginRoster]:
        return list(self._origins.values())

    def origin_names(self) -> list[str]:
        return list(self._origins)

    def companies_for(self, origin: str) -> list[CompanyDescriptor]:
        entry = self._origins.get(origin)
        if entry is None:
            raise OriginNotFoundError(origin, self.origin_names())
        return list(entry.companies)
