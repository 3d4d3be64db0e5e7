import logging
import sys
import datetime as dt
from pathlib import Path


def console_log(logger: logging.Logger, message: str, section: bool = False):
    """Log a message with optional section header formatting."""
    if section:
        logger.info(f"{'─' * 60}")
        logger.info(f"  {message}")
        logger.info(f"{'─' * 60}")
    else:
        logger.info(message)


class MaxLevelFilter(logging.Filter):
    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


def setup_logger(
    name: str,
    log_dir: str | Path = "logs/logship",
    level: int = logging.INFO,
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    console_output: bool = True
) -> logging.Logger:
    """
    Setup a logger writing to a daily log file and, optionally, the console.

    :param name: Logger name (e.g., 'logship.upload')
    :param log_dir: Directory to store log files
    :param level: Logging level for the file handler (default: logging.INFO)
    :param log_format: Log message format string
    :param console_output: If True, also outputs logs to console (default: True)

    :return: Logger where
    1. FILE receives logs at `level` and above.
    2. CONSOLE sends INFO (and DEBUG when `level` allows it) to stdout and
       WARNING and above to stderr, so CI annotations pick up problems.

    Example:
        >>> logger = setup_logger('logship.upload', 'logs/logship')
        >>> logger.warning('Retrying upload')
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    log_date = dt.datetime.now().strftime('%Y-%m-%d')
    file_handler = logging.FileHandler(log_path / f"logs_{log_date}.log")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)

    if console_output:
        console_formatter = logging.Formatter('%(message)s')

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.addFilter(MaxLevelFilter(logging.INFO))
        stdout_handler.setFormatter(console_formatter)
        logger.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        logger.addHandler(stderr_handler)

    return logger
