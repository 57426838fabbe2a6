"""
Structured logging helpers for consistent log formatting.

Provides utilities for phase and summary logging without decorative separators.
"""
import logging
from datetime import datetime, timezone


def log_section_start(logger: logging.Logger, section_name: str) -> None:
    """
    Log the start of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being started
    """
    logger.info(f"Starting: {section_name}")


def log_section_end(logger: logging.Logger, section_name: str) -> None:
    """
    Log the end of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being ended
    """
    logger.info(f"Completed: {section_name}")


def log_window_processing(logger: logging.Logger, idx: int, total: int, url: str) -> None:
    """
    Log listing window header.

    Args:
        logger: Logger instance
        idx: Current window index (1-based)
        total: Total number of windows
        url: Listing URL being fetched
    """
    logger.info(f"Scanning window {idx}/{total}: {url}")


def log_grab_start(logger: logging.Logger) -> None:
    """Log grab run start."""
    logger.info(f"Grab started at {datetime.now(timezone.utc).isoformat()}")


def log_grab_end(logger: logging.Logger) -> None:
    """Log grab run end."""
    logger.info(f"Grab completed at {datetime.now(timezone.utc).isoformat()}")


def log_scan_summary(
    logger: logging.Logger,
    channels_count: int,
    tasks_count: int
) -> None:
    """
    Log listing scan summary.

    Args:
        logger: Logger instance
        channels_count: Number of scanned channels
        tasks_count: Number of discovered programme ids
    """
    logger.info(f"Scan summary - Channels: {channels_count}, Programmes: {tasks_count}")


def log_run_stats(
    logger: logging.Logger,
    programmes: int,
    warnings: int
) -> None:
    """
    Log final run statistics.

    Args:
        logger: Logger instance
        programmes: Programmes written to the output
        warnings: Skipped tasks and other non-fatal problems
    """
    logger.info(f"Wrote {programmes} programmes with {warnings} warnings")
