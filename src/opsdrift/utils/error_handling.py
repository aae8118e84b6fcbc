"""
Basic error handling utilities.
"""

import logging
from typing import Dict, Any, Iterable, Optional

from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


class OpsDriftError(Exception):
    """Base class for errors raised by the drift engine."""
    status_code = 500


class ResourceNotFoundError(OpsDriftError):
    """Unknown repository or family."""
    status_code = 404


class FilterValidationError(OpsDriftError):
    """A query filter value outside its allowed enum."""
    status_code = 400

    def __init__(self, field: str, value: Any, allowed: Iterable[str]):
        self.field = field
        self.value = value
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid value {value!r} for '{field}'. Allowed: {', '.join(self.allowed)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "value": self.value,
            "allowed": self.allowed,
        }


class StoreUnavailableError(OpsDriftError):
    """The state store could not be reached."""
    status_code = 503


class RemoteExecError(OpsDriftError):
    """A corrective git operation failed on the target instance."""

    def __init__(self, message: str, old_head: Optional[str] = None):
        super().__init__(message)
        self.old_head = old_head


def log_error_context(
    error_type: str,
    error_message: str,
    endpoint: str = None,
    **kwargs
) -> Dict[str, Any]:
    """Log error with context information."""

    error_context = {
        "error_type": error_type,
        "error_message": error_message,
        "endpoint": endpoint,
        "timestamp": utc_now().isoformat(),
        **kwargs
    }

    logger.error(f"Error occurred: {error_context}")
    return error_context

