"""Utility functions for the enrichment report pipeline."""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_dir=None, level=logging.INFO):
    """Set up logging configuration.

    Args:
        log_dir: Directory to store log files
        level: Logging level
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Drop handlers from an earlier call so repeated runs do not double-log
    for handler in root_logger.handlers[:]:
        if getattr(handler, '_degenrich', False):
            root_logger.removeHandler(handler)
            handler.close()

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_dir / 'pipeline.log', mode='w')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._degenrich = True
        root_logger.addHandler(file_handler)
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    console_handler._degenrich = True
    root_logger.addHandler(console_handler)

    return logging.getLogger('degenrich')


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def artifact_stem(organism: str, category: str, direction: str, suffix: Optional[str] = None) -> str:
    """Build the file name prefix shared by one combination's artifacts."""
    return f"{organism}_{category}_{direction}{suffix or ''}"
