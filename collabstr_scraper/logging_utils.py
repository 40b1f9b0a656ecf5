"""Colored, filtered console logging for crawl scripts."""
import logging
import logging.handlers
from pathlib import Path


class Colors:
    """ANSI color codes."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


class ColoredFormatter(logging.Formatter):
    """A logging formatter that colors each line by level."""

    LOG_LEVEL_COLORS = {
        logging.DEBUG: Colors.CYAN,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record):
        color = self.LOG_LEVEL_COLORS.get(record.levelno)
        message = super().format(record)
        if color:
            return color + message + Colors.RESET
        return message


class ConsoleFilter(logging.Filter):
    """Let only crawl progress lines and warnings through to the console."""

    CRAWLER_LOGGERS = (
        "collabstr_scraper.crawl.list_crawler",
        "collabstr_scraper.crawl.detail_crawler",
        "collabstr_scraper.crawl.session",
    )
    PROGRESS_MARKERS = (
        "PAGE",
        "BATCH",
        "COMPLETE",
        "SESSION",
        "STOP",
        "===",
    )

    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True

        if record.levelno == logging.INFO:
            if record.name in self.CRAWLER_LOGGERS:
                msg = record.getMessage()
                if any(marker in msg for marker in self.PROGRESS_MARKERS):
                    return True

            # Script runners report directly.
            if record.name == "__main__" or record.name.startswith("scripts."):
                return True

        return False


def setup_crawl_logging(console_level=logging.INFO, file_level=logging.DEBUG, quiet=False, log_dir=None):
    """
    Set up logging for crawl scripts with a colored, filtered console
    handler and a verbose rotating file handler (``logs/crawl.log``).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if not quiet:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level)
        console_handler.setFormatter(
            ColoredFormatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        console_handler.addFilter(ConsoleFilter())
        root_logger.addHandler(console_handler)

    directory = Path(log_dir) if log_dir is not None else Path("logs")
    directory.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        directory / "crawl.log", maxBytes=5 * 1024 * 1024, backupCount=5
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s")
    )
    root_logger.addHandler(file_handler)

    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Colored and filtered logging initialized.")
