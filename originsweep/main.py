import argparse
import asyncio
import logging
from pathlib import Path

from originsweep.config import Settings, get_settings
from originsweep.outputs import processed_path_for, read_batch, write_json
from originsweep.pipeline import AnalysisRunner
from originsweep.reduction import ResultReducer
from originsweep.roster import Roster
from originsweep.run_store import open_ledger
from originsweep.scheduler import send_to_webhook, start_scheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch and reduce smart analyze results per origin")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="analyze one origin with retries")
    run_parser.add_argument("--origin", required=True, help="Origin name from the roster")
    run_parser.add_argument("--run-key", required=False, help="Idempotency key for this run")
    run_parser.add_argument("--max-retries", type=int, default=None, help="Whole-origin attempts before individual retry")
    run_parser.add_argument("--no-individual", action="store_true", help="skip the one-by-one retry of failed companies")
    run_parser.add_argument("--no-save", action="store_true", help="do not write the result file")
    run_parser.add_argument("--save-raw", action="store_true", help="also write each unreduced attempt to the output dir")
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    sweep_parser = subparsers.add_parser("sweep", help="analyze every origin in the roster")
    sweep_parser.add_argument("--no-save", action="store_true", help="do not write result files")
    sweep_parser.add_argument("--notify", action="store_true", help="post the sweep report to the webhook")

    subparsers.add_parser("origins", help="list origins available in the roster")

    reduce_parser = subparsers.add_parser("reduce", help="reduce a saved raw result file")
    reduce_parser.add_argument("input", help="Raw smart analyze result file")
    reduce_parser.add_argument("output", nargs="?", help="Destination file (default: <input>_processed.json)")

    schedule_parser = subparsers.add_parser("schedule", help="start the cron scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also sweep once immediately")

    return parser.parse_args()


def _list_origins(settings: Settings) -> None:
    for entry in Roster.from_file(settings.roster_path).available_origins():
        print(f"origin={entry.origin} companies={entry.companies_count}")


def _reduce_file(input_path: Path, output_path: Path | None) -> None:
    batch = read_batch(input_path)
    stats = ResultReducer().reduce(batch)
    destination = output_path or processed_path_for(input_path)
    write_json(destination, batch.to_dict())
    print(
        "processed={processed} removed={removed} remaining={remaining} companies={companies} drivers={drivers} output={output}".format(
            processed=stats.total_logs_processed,
            removed=stats.total_logs_removed,
            remaining=stats.remaining_logs,
            companies=stats.companies_processed,
            drivers=stats.drivers_processed,
            output=destination,
        )
    )


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "origins":
        _list_origins(settings)
        return

    if args.command == "reduce":
        _reduce_file(Path(args.input), Path(args.output) if args.output else None)
        return

    session_factory = open_ledger(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    runner = AnalysisRunner(settings, session_factory)
    if args.command == "sweep":
        report = asyncio.run(runner.sweep(save=not args.no_save))
        if args.notify:
            send_to_webhook(report, settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)
        summary = report["summary"]
        print(
            "origins={total} successful={successful} failed={failed} time={time}".format(
                total=summary["totalOrigins"],
                successful=summary["successful"],
                failed=summary["failed"],
                time=summary["executionTime"],
            )
        )
        if summary["failed"]:
            raise SystemExit(1)
        return

    result = asyncio.run(
        runner.run(
            origin=args.origin,
            run_key=args.run_key,
            trigger_source=args.trigger_source,
            max_retries=args.max_retries,
            retry_individually=False if args.no_individual else None,
            save=not args.no_save,
            save_raw=args.save_raw,
        )
    )

    print(
        "run_id={run_id} run_key={run_key} origin={origin} status={status} total={total} successful={successful} failed={failed} attempts={attempts} reused={reused} output={output}".format(
            run_id=result.run_id,
            run_key=result.run_key,
            origin=result.origin,
            status=result.status,
            total=result.total_companies,
            successful=result.successful,
            failed=result.failed,
            attempts=result.total_attempts,
            reused=result.reused_existing_run,
            output=result.output_path,
        )
    )
    if result.status == "failed" or result.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
