"""Log line helpers."""

import re

# RFC3339 prefix added by the log endpoint when timestamps=true
LOG_TIMESTAMP_PATTERN = re.compile(
    r"^[\t\s]*\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})\s*"
)


def strip_log_timestamp(line: str) -> str:
    """Remove a leading RFC3339 timestamp (and the whitespace after it).

    Lines without a timestamp are returned unchanged.
    """
    return LOG_TIMESTAMP_PATTERN.sub("", line, count=1)
