import argparse
import logging
import sys
from pathlib import Path

from eventsync import __version__
import eventsync.config as cfg_module
import eventsync.db as db_module
from eventsync.errors import ConfigurationError, StoreUnavailableError
from eventsync.notify import build_notifier
from eventsync.orchestrator import Orchestrator
from eventsync.report import render_summary
from eventsync.scrapers import SCRAPERS

logger = logging.getLogger(__name__)


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _scrape(args, cfg) -> int:
    enabled_sources = cfg_module.get_sources(cfg)

    if args.source:
        unknown = [key for key in args.source if key not in SCRAPERS]
        if unknown:
            print(f"Available sources: {', '.join(sorted(SCRAPERS))}", file=sys.stderr)
            return _fail(f"no scraper registered for source '{unknown[0]}'.")
        keys = list(dict.fromkeys(args.source))
    else:
        keys = [k for k in SCRAPERS if k in enabled_sources]

    if not keys:
        print("No enabled sources found. Check your config.toml [sources] section.")
        return 0

    overrides = {
        "max_pages": args.max_pages,
        "max_items": args.max_items,
        "request_delay_ms": args.delay_ms,
        "fetch_details": False if args.no_details else None,
    }
    adapters, options = [], {}
    for key in keys:
        source_cfg = cfg.get("sources", {}).get(key, {})
        adapters.append(SCRAPERS[key](source_cfg))
        options[key] = cfg_module.get_source_options(source_cfg, overrides)

    conn = db_module.connect(cfg_module.get_database_path(cfg))
    try:
        orchestrator = Orchestrator(
            store=db_module.EventStore(conn),
            notifier=build_notifier(cfg),
            adapters=adapters,
            parallel=cfg_module.get_ingest(cfg).get("parallel", True) and not args.sequential,
        )
        stats = orchestrator.run(options)
    finally:
        conn.close()

    logger.info("Run finished in %.1fs with %d errors", stats.duration, stats.errors)
    print(render_summary(stats), end="")
    return 0


def _sources(args, cfg) -> int:
    enabled = cfg_module.get_sources(cfg)
    for key, scraper_cls in SCRAPERS.items():
        state = "enabled" if key in enabled else "disabled"
        print(f"{key:<14} {scraper_cls.source_name:<24} {state}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="eventsync",
        description="Multi-source event ingestion with fuzzy deduplication",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", default="config.toml", metavar="PATH",
        help="Path to config.toml (default: config.toml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress at INFO level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # scrape
    sp_scrape = subparsers.add_parser("scrape", help="Fetch every source and merge into the database")
    sp_scrape.add_argument(
        "--source", metavar="KEY", action="append",
        help="Only scrape this source (repeatable)",
    )
    sp_scrape.add_argument("--sequential", action="store_true", help="Run the sources one after another")
    sp_scrape.add_argument("--no-details", action="store_true", help="Skip per-event detail pages")
    sp_scrape.add_argument("--max-pages", type=int, metavar="N", help="Listing page cap per source")
    sp_scrape.add_argument("--max-items", type=int, metavar="N", help="Item cap per source")
    sp_scrape.add_argument("--delay-ms", type=int, metavar="MS", help="Politeness delay between requests")

    # sources
    subparsers.add_parser("sources", help="List the registered sources")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = cfg_module.load(Path(args.config))
        if args.command == "scrape":
            return _scrape(args, cfg)
        return _sources(args, cfg)
    except (ConfigurationError, StoreUnavailableError) as exc:
        return _fail(str(exc))


if __name__ == "__main__":
    sys.exit(main())
