"""
Shared helpers: timestamps and the error taxonomy.
"""

from .error_handling import (
    OpsDriftError,
    ResourceNotFoundError,
    FilterValidationError,
    StoreUnavailableError,
    RemoteExecError,
    log_error_context,
)
from .timeutils import utc_now, ensure_utc, isoformat, elapsed_ms, age_seconds

__all__ = [
    "OpsDriftError",
    "ResourceNotFoundError",
    "FilterValidationError",
    "StoreUnavailableError",
    "RemoteExecError",
    "log_error_context",
    "utc_now",
    "ensure_utc",
    "isoformat",
    "elapsed_ms",
    "age_seconds",
]
