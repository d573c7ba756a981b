"""Command-line interface for the portal crawler: run, progress and reset."""

import asyncio
import json
import logging
import signal
import sys

from portal_crawler.config import CrawlConfig
from portal_crawler.errors import PersistenceError
from portal_crawler.infrastructure.rate_limiter import RateGovernor, RateGovernorConfig
from portal_crawler.logging_config import setup_logging
from portal_crawler.orchestrator import CancellationToken, CrawlOrchestrator, RunReport
from portal_crawler.output import CsvItemSink
from portal_crawler.session import open_session
from portal_crawler.sites import StudyPortalsAdapter
from portal_crawler.state_store import ProgressStore

logger = logging.getLogger(__name__)


def load_config(args) -> CrawlConfig:
    """Config from --config file or environment, with CLI overrides applied."""
    if getattr(args, "config", None):
        config = CrawlConfig.from_file(args.config)
    else:
        config = CrawlConfig.from_env()

    if getattr(args, "state_file", None):
        config.state_file = args.state_file
    if getattr(args, "targets", None):
        config.targets = args.targets
    if getattr(args, "categories", None):
        config.categories = args.categories
    if getattr(args, "headless", None) is not None:
        config.headless = args.headless
    if getattr(args, "solver", None):
        config.solver_service = args.solver
    if getattr(args, "max_pages", None) is not None:
        config.max_listing_pages = args.max_pages
    if getattr(args, "allow_partial_phases", False):
        config.allow_partial_phases = True
    return config


async def _run(config: CrawlConfig, cancel: CancellationToken) -> RunReport:
    store = ProgressStore(config.state_file)
    store.load()

    async with open_session(config) as session:
        orchestrator = CrawlOrchestrator(
            store=store,
            escalator=session.escalator,
            governor=RateGovernor(RateGovernorConfig(base_delay=config.request_delay, jitter=config.jitter)),
            adapter=StudyPortalsAdapter(),
            sink=CsvItemSink(config.output_dir),
            config=config,
            cancel=cancel,
            listing_ladder=session.listing_ladder,
            item_ladder=session.item_ladder,
        )
        return await orchestrator.run()


def install_signal_handlers(cancel: CancellationToken) -> None:
    """First Ctrl+C finishes the current item and stops; a second one exits now."""
    def handle_interrupt(signum, frame):
        if cancel.cancelled:
            print("\nForced exit. Progress up to the last finished item is saved.")
            sys.exit(130)
        print("\n\n⚠️  Stopping after the current item (Ctrl+C again to force)...")
        cancel.cancel(f"signal {signum}")

    signal.signal(signal.SIGINT, handle_interrupt)
    signal.signal(signal.SIGTERM, handle_interrupt)


def run_command(args):
    """Run (or resume) the crawl."""
    config = load_config(args)
    cancel = CancellationToken()
    install_signal_handlers(cancel)

    print(f"Targets: {', '.join(config.targets)}")
    print(f"Phases: {' -> '.join(config.categories)}")
    print(f"State file: {config.state_file}")

    try:
        report = asyncio.run(_run(config, cancel))
    except PersistenceError as e:
        print(f"\n❌ Could not save progress: {e}", file=sys.stderr)
        sys.exit(1)

    print("\n" + "=" * 60)
    print("Run summary")
    print("=" * 60)
    print(f"Listing pages fetched: {report.listing_pages}")
    print(f"Items saved: {report.items_processed}")
    print(f"Items skipped after retries: {report.items_failed}")
    if report.units_completed:
        print(f"Units completed: {', '.join(report.units_completed)}")
    if report.units_blocked:
        print(f"Units blocked: {', '.join(report.units_blocked)}")
    if report.units_failed:
        print(f"Units failed: {', '.join(report.units_failed)}")
    if report.stopped_at_phase:
        print(f"Stopped before finishing phase '{report.stopped_at_phase}'.")
    if report.cancelled or report.stopped_at_phase:
        print("Resume with: portal-crawler run")


def print_progress(summary: dict) -> None:
    print(f"Current phase: {summary['current_phase'] or '-'}")
    print(f"Last updated: {summary['last_updated']}")
    if not summary["units"]:
        print("No progress recorded yet.")
        return

    print()
    print(f"{'Unit':<24} {'Status':<12} {'Page':>5} {'Pending':>8} {'Done':>6} {'Failed':>7}")
    print("-" * 66)
    for unit in summary["units"]:
        name = f"{unit['target']}/{unit['category']}"
        print(
            f"{name:<24} {unit['status']:<12} {unit['cursor']:>5} "
            f"{unit['pending']:>8} {unit['items_processed']:>6} {unit['items_failed']:>7}"
        )
        if unit["last_error"]:
            print(f"    last error: {unit['last_error']}")

    totals = summary["totals"]
    print("-" * 66)
    print(
        f"{totals['completed_units']}/{totals['units']} units completed, "
        f"{totals['items_processed']} items saved, {totals['items_failed']} failed, "
        f"{totals['pending_items']} pending"
    )


def progress_command(args):
    """Show stored progress."""
    config = load_config(args)
    store = ProgressStore(config.state_file)
    store.load()
    summary = store.progress_summary()

    if args.output == "json":
        print(json.dumps(summary, indent=2))
    else:
        print_progress(summary)


def reset_command(args):
    """Discard stored progress."""
    config = load_config(args)
    if not args.yes:
        answer = input(f"Reset all progress in {config.state_file}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return

    try:
        ProgressStore(config.state_file).reset()
    except PersistenceError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    print("Progress reset.")


def main(argv=None):
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Portal crawler - resumable crawl of study portal listings"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--config",
        help="JSON config file (default: read CRAWL_* environment variables)",
    )
    parser.add_argument(
        "--state-file",
        help="Progress state file (overrides config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run or resume the crawl.")
    run_parser.add_argument(
        "--targets", nargs="+", help="Targets to crawl, in order (e.g. UK Germany)"
    )
    run_parser.add_argument(
        "--categories", nargs="+", help="Phases to crawl, in order (e.g. masters bachelors)"
    )
    headless_group = run_parser.add_mutually_exclusive_group()
    headless_group.add_argument(
        "--headless", dest="headless", action="store_true", default=None,
        help="Run browsers without windows (default)",
    )
    headless_group.add_argument(
        "--headed", dest="headless", action="store_false",
        help="Show browser windows on every step",
    )
    run_parser.add_argument(
        "--solver",
        choices=["2captcha", "mock", "none"],
        help="Puzzle solving service (default: 2captcha when a key is set)",
    )
    run_parser.add_argument(
        "--max-pages",
        type=int,
        help="Maximum listing pages per unit in this run",
    )
    run_parser.add_argument(
        "--allow-partial-phases",
        action="store_true",
        help="Start the next phase even if some units of the current one are unfinished",
    )
    run_parser.set_defaults(func=run_command)

    progress_parser = subparsers.add_parser("progress", help="Show crawl progress.")
    progress_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    progress_parser.set_defaults(func=progress_command)

    reset_parser = subparsers.add_parser("reset", help="Discard all crawl progress.")
    reset_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )
    reset_parser.set_defaults(func=reset_command)

    args = parser.parse_args(argv)

    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
