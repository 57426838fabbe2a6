"""
File operation utilities

This module handles the transient work directory holding the task queue and
the per-worker output files.
"""
import logging
import tempfile
from pathlib import Path


logger = logging.getLogger(__name__)

QUEUE_FILENAME = "tasks.queue"


def create_work_dir(parent: str | Path | None = None) -> Path:
    """
    Create a private work directory for one grab run

    Args:
        parent: Directory to create it in (system temp directory when None)

    Returns:
        Path to the new directory
    """
    work_dir = Path(tempfile.mkdtemp(prefix="tvgrab-", dir=parent))
    logger.debug(f"Created work directory {work_dir}")
    return work_dir


def worker_output_path(work_dir: Path, index: int) -> Path:
    """Private output file of worker `index`"""
    return work_dir / f"worker-{index}.jsonl"


def cleanup_temp_file(file_path: Path | None) -> bool:
    """
    Safely delete a temporary file

    Args:
        file_path: Path to file to delete

    Returns:
        True if deleted successfully, False otherwise
    """
    if not file_path or not file_path.exists():
        return False

    try:
        file_path.unlink()
        logger.debug(f"Cleaned up temporary file: {file_path}")
        return True
    except (OSError, PermissionError) as e:
        logger.warning(f"Failed to delete temporary file {file_path}: {e}")
        return False


def cleanup_work_dir(work_dir: Path | None) -> int:
    """
    Delete the files of a work directory and the directory itself

    Returns:
        Number of files removed
    """
    if not work_dir or not work_dir.exists():
        return 0

    removed = sum(1 for path in list(work_dir.iterdir()) if cleanup_temp_file(path))
    try:
        work_dir.rmdir()
        logger.debug(f"Removed work directory {work_dir}")
    except OSError as e:
        logger.warning(f"Failed to remove work directory {work_dir}: {e}")
    return removed
