"""
Logging setup for the gateway.
===============================

Console logging on the root logger with a colored, section-aware formatter,
plus per-turn correlation ids kept in ``contextvars``. Each aiohttp request
runs in its own task, so ids set while processing one turn never leak into a
concurrent one.
"""

import contextvars
import logging
import sys
import uuid
from typing import Dict, Optional

# =============================================================================
# CORRELATION CONTEXT
# =============================================================================

turn_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('turn_id', default=None)
session_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('session_id', default=None)
user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('user_id', default=None)


def start_new_turn(user_id_param: Optional[str], session_id_val: Optional[str] = None) -> str:
    """Start a new conversation turn and return its id.

    ``session_id_val`` is the conversation id when one is known.
    """
    turn_id_val = str(uuid.uuid4())
    turn_id.set(turn_id_val)
    session_id.set(session_id_val or str(uuid.uuid4()))
    user_id.set(user_id_param)
    return turn_id_val


def clear_turn_ids():
    turn_id.set(None)
    session_id.set(None)
    user_id.set(None)


def get_correlation_ids() -> Dict[str, Optional[str]]:
    return {
        'turn_id': turn_id.get(),
        'session_id': session_id.get(),
        'user_id': user_id.get(),
    }


class CorrelationFilter(logging.Filter):
    """Adds correlation IDs to every record passing through a handler."""

    def filter(self, record):
        for name, value in get_correlation_ids().items():
            setattr(record, name, value)
        record.turn = f" [turn:{record.turn_id[:8]}]" if record.turn_id else ""
        return True


# =============================================================================
# FORMATTING
# =============================================================================

COLORS = {
    "reset": "\033[0m", "bold": "\033[1m", "header": "\033[1;36m", "success": "\033[1;32m",
    "warning": "\033[1;33m", "error": "\033[1;31m", "info": "\033[1;34m", "debug": "\033[0;37m"
}
SECTIONS = {
    "ENV": {"start": "=== LOADING ENVIRONMENT VARIABLES ===", "title": f"{COLORS['header']}[KEY] Environment Setup{COLORS['reset']}", "end": "=== ENVIRONMENT LOADED SUCCESSFULLY ==="},
    "CONFIG": {"start": "=== CONFIG VALIDATION RESULTS ===", "title": f"{COLORS['header']}[GEAR] Configuration{COLORS['reset']}", "end": "=== CONFIG VALIDATED ==="},
    "STARTUP": {"start": "Bot server starting on", "title": f"{COLORS['header']}[ROCKET] Bot Server Startup{COLORS['reset']}", "end": "=== Bot server running ==="}
}
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s%(turn)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, use_colors=True):
        if fmt is None: fmt = DEFAULT_FORMAT
        super().__init__(fmt, datefmt, style='%'); self.use_colors = use_colors

    def _section_banner(self, message: str):
        """Returns the (header, footer) to wrap around a section marker line."""
        for section_name, section_details in SECTIONS.items():
            if section_details["start"] in message:
                return f"\n{'=' * 50}\n{section_details['title']}\n{'-' * 50}\n", ""
            if section_details["end"] in message:
                return "", f"\n{'-' * 50}\n{COLORS['info']}Section {section_name} completed{COLORS['reset']}\n{'=' * 50}\n"
        return "", ""

    def format(self, record):
        log_record = logging.makeLogRecord(record.__dict__)
        if not hasattr(log_record, 'turn'):
            log_record.turn = ""
        header, footer = "", ""
        if self.use_colors:
            if isinstance(record.msg, str):
                header, footer = self._section_banner(record.msg)
            if record.levelno >= logging.ERROR:
                log_record.levelname = f"{COLORS['error']}{record.levelname}{COLORS['reset']}"
                log_record.msg = f"{COLORS['error']}{record.msg}{COLORS['reset']}"
            elif record.levelno >= logging.WARNING:
                log_record.levelname = f"{COLORS['warning']}{record.levelname}{COLORS['reset']}"
            elif record.levelno >= logging.INFO:
                log_record.levelname = f"{COLORS['info']}{record.levelname}{COLORS['reset']}"
                if isinstance(record.msg, str) and record.msg.startswith("SUCCESS:"):
                    log_record.msg = f"{COLORS['success']}{record.msg}{COLORS['reset']}"
            else:
                log_record.levelname = f"{COLORS['debug']}{record.levelname}{COLORS['reset']}"
        return f"{header}{super().format(log_record)}{footer}"


# =============================================================================
# SETUP
# =============================================================================

NOISY_LOGGERS = ["urllib3", "msrest", "msal", "aiohttp.access"]
_HANDLER_NAME = "gateway-console"


def _resolve_level(level_str: Optional[str]) -> int:
    if not level_str:
        return logging.INFO
    numeric_level = getattr(logging, str(level_str).upper(), None)
    if isinstance(numeric_level, int):
        return numeric_level
    logging.getLogger(__name__).warning(f"Invalid LOG_LEVEL '{level_str}'. Using INFO.")
    return logging.INFO


def setup_logging(level_str: Optional[str] = None, use_colors: bool = True, stream=None) -> logging.Logger:
    """
    Install the console handler on the root logger.

    Safe to call more than once: the handler is replaced, not duplicated, so
    the level can be tightened once configuration has been read.
    """
    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(existing)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.set_name(_HANDLER_NAME)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    console_handler.addFilter(CorrelationFilter())
    root_logger.addHandler(console_handler)
    root_logger.setLevel(_resolve_level(level_str))

    # Quieten noisy libraries
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return root_logger


def get_logger(name: str = None) -> logging.Logger:
    return logging.getLogger(name)
