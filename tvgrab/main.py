import argparse
import logging
import sys
from contextlib import ExitStack

from pydantic import ValidationError

from tvgrab.config import CustomSettings, settings, setup_logging
from tvgrab.services.fetch_types import ScanContext
from tvgrab.services.orchestrator import GrabOrchestrator
from tvgrab.services.xmltv_writer import XmltvWriter
from tvgrab.utils.timezone import local_now


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tvgrab",
        description="Grab TV listings and write them as XMLTV.",
    )
    parser.add_argument("--days", type=int, default=settings.days, help="Number of days to grab")
    parser.add_argument("--offset", type=int, default=settings.day_offset, help="Start N days from today")
    parser.add_argument(
        "--channel",
        dest="channels",
        action="append",
        type=int,
        metavar="NUMBER",
        help="Only grab this channel number (repeatable)",
    )
    parser.add_argument("--output", help="Write XMLTV to this file instead of stdout")
    parser.add_argument("--workers", type=int, default=settings.workers, help="Number of detail-fetch workers")
    parser.add_argument("--cache-dir", default=settings.cache_dir, help="Cache fetched pages in this directory")
    parser.add_argument(
        "--list-channels",
        action="store_true",
        help="Scan one listing window and output channel declarations only",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--quiet", action="store_true", help="Only report warnings and errors")
    verbosity.add_argument("--verbose", action="store_true", help="Report debug details")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = settings.log_level
    if args.quiet:
        level = "WARNING"
    elif args.verbose:
        level = "DEBUG"
    setup_logging(level)

    try:
        run_settings = CustomSettings.model_validate(
            {
                **settings.model_dump(),
                "days": args.days,
                "day_offset": args.offset,
                "workers": args.workers,
                "cache_dir": args.cache_dir,
                "log_level": level,
            }
        )
    except ValidationError as exc:
        for error in exc.errors():
            logger.error("Invalid option %s: %s", ".".join(str(part) for part in error["loc"]), error["msg"])
        return 1

    context = ScanContext.build(
        local_now(run_settings.utc_offset_hours, run_settings.observes_dst),
        days=run_settings.days,
        day_offset=run_settings.day_offset,
        window_hours=run_settings.listing_window_hours,
        utc_offset_hours=run_settings.utc_offset_hours,
        observes_dst=run_settings.observes_dst,
        channel_filter=frozenset(args.channels) if args.channels else None,
    )
    logger.info(
        "Grabbing %s day(s) from %s (window %sh, %s workers)",
        run_settings.days,
        context.scan_start.date(),
        context.window_hours,
        run_settings.workers,
    )
    orchestrator = GrabOrchestrator.from_settings(run_settings, context)

    with ExitStack() as stack:
        if args.output:
            stream = stack.enter_context(open(args.output, "wb"))
        else:
            stream = sys.stdout.buffer
        writer = stack.enter_context(XmltvWriter(stream))
        if args.list_channels:
            result = orchestrator.list_channels(writer)
        else:
            result = orchestrator.run(writer)

    logger.info("Run summary: %s", result.to_dict())
    if result.error:
        logger.error("Grab failed: %s", result.error)
    elif result.warnings:
        logger.warning("Grab finished with %s warning(s)", result.warnings)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
