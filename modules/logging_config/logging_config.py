import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

from colorama import Fore, Style, init

init(autoreset=True)

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s'
FILE_LOG_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s] [%(funcName)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

class ColoredFormatter(logging.Formatter):
    """Custom formatter with color support for console output."""
    COLORS = {
        'DEBUG': Fore.WHITE + Style.DIM,
        'INFO': Fore.CYAN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT
    }
    RESET = Style.RESET_ALL

    def format(self, record):
        # Work on a copy so the file handler sees the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)

class LoggingConfigurator:
    """Configures system-wide logging: coloured console plus a rotating UTF-8 log file."""

    def __init__(self, config: dict):
        self.config = config.get('logging', {})
        self.log_level = getattr(logging, self.config.get('level', 'INFO').upper())
        self.log_dir = Path(self.config.get('log_dir', 'logs'))

    def setup(self) -> None:
        """Setup root logger handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers = []

        if self.config.get('log_to_console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)

            if self.config.get('colorful_console', True):
                formatter = ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
            else:
                formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

        if self.config.get('log_to_file', True):
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._add_file_handler(root_logger, "pipeline.log")

    def _add_file_handler(self, logger: logging.Logger, filename: str):
        handler = RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=10*1024*1024,
            backupCount=5,
            encoding='utf-8'
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(handler)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)
