"""
Logging configuration for the AI Trading Engine.

Provides structured, scannable CLI logging with:
- Color-coded output for Docker/terminal
- Log levels: DEBUG, INFO, WARNING, ERROR
- Component prefixes: [Engine], [Optimizer], [Learning], etc.
- Backward-compatible log() function as print() replacement
"""
import logging
import sys
import os
from datetime import datetime
from typing import Optional

# ANSI color codes for terminal output
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    # Foreground colors
    BLACK = "\033[30m"
    WHITE = "\033[97m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"

    # Component styles (background + foreground for readability)
    ENGINE = f"\033[48;5;208m\033[30m"        # Orange bg, black text
    OPTIMIZER = f"\033[48;5;93m\033[97m"      # Purple bg, white text
    LEARNING = f"\033[48;5;205m\033[30m"      # Pink bg, black text
    BACKTEST = f"\033[48;5;22m\033[97m"       # Dark green bg, white text
    STARTUP = f"\033[42m\033[30m"             # Green bg, black text
    SHUTDOWN = f"\033[43m\033[30m"            # Yellow bg, black text
    DATA = f"\033[44m\033[97m"                # Blue bg, white text
    NEWS = f"\033[46m\033[30m"                # Cyan bg, black text
    API = f"\033[48;5;17m\033[97m"            # Dark blue bg, white text

    # Level colors (for log level indication)
    WARNING = f"\033[43m\033[30m"  # Yellow bg, black text
    ERROR = f"\033[41m\033[97m"    # Red bg, white text


class CLIFormatter(logging.Formatter):
    """Custom formatter for scannable CLI output with background colors."""

    COMPONENT_COLORS = {
        'engine': Colors.ENGINE,
        'optimizer': Colors.OPTIMIZER,
        'learning': Colors.LEARNING,
        'backtest': Colors.BACKTEST,
        'startup': Colors.STARTUP,
        'shutdown': Colors.SHUTDOWN,
        'data': Colors.DATA,
        'news': Colors.NEWS,
        'api': Colors.API,
        'app': '',
    }

    PREFIXES = {
        'engine': ' ENGN ',
        'optimizer': ' OPTM ',
        'learning': ' LEARN ',
        'backtest': ' BTEST ',
        'startup': ' START ',
        'shutdown': ' STOP ',
        'data': ' DATA ',
        'news': ' NEWS ',
        'api': ' API ',
        'app': ' APP ',
    }

    LEVEL_COLORS = {
        'DEBUG': Colors.DIM,
        'INFO': '',
        'WARNING': Colors.WARNING,
        'ERROR': Colors.ERROR,
    }

    def format(self, record):
        # Extract component from logger name
        component = record.name.split('.')[-1] if '.' in record.name else 'app'
        component_color = self.COMPONENT_COLORS.get(component, '')
        prefix = self.PREFIXES.get(component, f' {component.upper()[:5]} ')

        # Time in HH:MM:SS format for scannability
        timestamp = datetime.now().strftime("%H:%M:%S")

        level_color = self.LEVEL_COLORS.get(record.levelname, '')
        msg = record.getMessage()

        # For warnings/errors, apply background to whole message
        if record.levelname in ('WARNING', 'ERROR'):
            return f"{Colors.DIM}{timestamp}{Colors.RESET} {component_color}{prefix}{Colors.RESET} {level_color} {msg} {Colors.RESET}"

        return f"{Colors.DIM}{timestamp}{Colors.RESET} {component_color}{prefix}{Colors.RESET} {msg}"


def setup_logging(level: str = None) -> logging.Logger:
    """
    Initialize application logging.

    Args:
        level: Minimum log level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
               Defaults to LOG_LEVEL env var or 'INFO'

    Returns:
        Root application logger
    """
    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO')

    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger('aitrader')
    root.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CLIFormatter())
    handler.setLevel(log_level)
    root.addHandler(handler)

    # Prevent propagation to root logger
    root.propagate = False

    return root


def get_logger(component: str) -> logging.Logger:
    """Get a logger for a specific component."""
    return logging.getLogger(f'aitrader.{component}')


# Message prefix -> component. First match wins.
_PREFIX_COMPONENTS = [
    (('[Engine]', '[Runner]'), 'engine'),
    (('[Optimizer]', '[Auto Optimizer]'), 'optimizer'),
    (('[Learning]',), 'learning'),
    (('[Backtest]', '[Cycle Backtest]'), 'backtest'),
    (('[Startup]',), 'startup'),
    (('[Shutdown]',), 'shutdown'),
    (('[Data]', '[Candle Cache]'), 'data'),
    (('[News]',), 'news'),
    (('[API]',), 'api'),
]


def log(message: str, level: str = 'INFO', component: Optional[str] = None):
    """
    Log a message with automatic component detection from prefix.

    Drop-in replacement for print() that adds structured logging.

    Usage:
        log("[Engine] Cycle 12 complete")          # Auto-detects component
        log("Iteration 4/20", component='optimizer')
        log("[Data] Fetch failed", level='WARNING')
    """
    if component is None:
        component = 'app'
        for prefixes, name in _PREFIX_COMPONENTS:
            matched = next((p for p in prefixes if p in message), None)
            if matched:
                component = name
                message = message.replace(f"{matched} ", '').replace(matched, '')
                break

    logger = get_logger(component)
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.log(log_level, message)


# Uvicorn log config to suppress noisy access logs
UVICORN_LOG_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(levelname)s | %(message)s",
        },
        "access": {
            "format": "%(levelname)s | %(client_addr)s - %(request_line)s %(status_code)s",
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "WARNING"},
        "uvicorn.error": {"level": "WARNING"},
        "uvicorn.access": {"handlers": ["access"], "level": "WARNING"},
    },
}


# Initialize logging on import
_root_logger = setup_logging()
