"""Utility modules for the card agents runtime."""

from .errors import describe_error, get_displayable_error, is_ignorable_network_error
from .log_lines import strip_log_timestamp
from .logging import bind_card, get_logger, setup_logging
from .streams import LineDecoder, iter_lines, iter_until_signal, wait_or_signal

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_card",
    "describe_error",
    "get_displayable_error",
    "is_ignorable_network_error",
    "strip_log_timestamp",
    "LineDecoder",
    "iter_lines",
    "iter_until_signal",
    "wait_or_signal",
]
