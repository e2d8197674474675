"""
Mapping of raised errors onto the `{success, message, error_code}` envelope
"""
import logging
from typing import Any, Dict

from app.core.exceptions import DomainException

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


def error_fields(exc: Exception, action: str) -> Dict[str, Any]:
    """Envelope fields for a failed mutation; call from inside the except block"""
    if isinstance(exc, DomainException):
        return {"success": False, "message": exc.message, "error_code": exc.code}

    logger.exception(f"Unexpected error {action}")
    return {"success": False, "message": f"Error {action}", "error_code": INTERNAL_ERROR}
