from collections.abc import Generator
from pathlib import Path

from helpers import ScriptedClient, driver, no_sleep, write_roster
import pytest

from originsweep.config import Settings
from originsweep.pipeline import AnalysisRunner
from originsweep.run_store import open_ledger


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "results").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def roster_path(temp_workspace: Path) -> Path:
    return write_roster(
        temp_workspace / "roster.json",
        {
            "HERO": [("c1", "Alpha Freight"), ("c2", "Bravo Haul"), ("c3", "Charlie Lines")],
            "HERO2": [("d1", "Delta Trucking")],
        },
    )


@pytest.fixture()
def test_settings(temp_workspace: Path, roster_path: Path) -> Settings:
    return Settings(
        app_name="originsweep",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        api_base_url="https://monitoring.test",
        api_auth_token="test-token",
        fetch_timeout_seconds=5,
        roster_path=str(roster_path),
        output_dir=str(temp_workspace / "results"),
        max_retries=2,
        retry_failed_individually=True,
        retry_delay_seconds=0,
        individual_retry_delay_seconds=0,
        max_concurrency=0,
        preserve_roster_order=False,
        inter_origin_delay_seconds=0,
        schedule_cron="0 */2 * * *",
        webhook_url=None,
        webhook_timeout_seconds=1,
    )


@pytest.fixture()
def healthy_script() -> dict[str, list[object]]:
    return {
        "c1": [[driver("Ann", "REAL EVENT", "ODOMETER ERROR")]],
        "c2": [[driver("Bob", "REAL EVENT")]],
        "c3": [[driver("Cid", "DIAGNOSTIC EVENT")]],
        "d1": [[driver("Dee", "REAL EVENT")]],
    }


@pytest.fixture()
def make_runner(test_settings: Settings) -> Generator:
    session_factory = open_ledger(test_settings.database_url)

    def build(client: ScriptedClient) -> AnalysisRunner:
        return AnalysisRunner(test_settings, session_factory, client=client, sleep=no_sleep)

    yield build
