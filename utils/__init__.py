"""
Utils Package - logging and log sanitization for the gateway.
"""

# Core logging functionality
from .logging_config import (
    setup_logging,
    get_logger,
    start_new_turn,
    clear_turn_ids,
    get_correlation_ids,
    CorrelationFilter,
    ColoredFormatter,
)

# Data sanitization
from .log_sanitizer import (
    sanitize_for_logging,
    mask_secret,
    DataSanitizer,
    SanitizationRule,
)

__all__ = [
    # Core logging
    'setup_logging',
    'get_logger',
    'start_new_turn',
    'clear_turn_ids',
    'get_correlation_ids',
    'CorrelationFilter',
    'ColoredFormatter',

    # Data sanitization
    'sanitize_for_logging',
    'mask_secret',
    'DataSanitizer',
    'SanitizationRule',
]
