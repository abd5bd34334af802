"""
HTTP blueprints.

``register_error_handlers`` maps the domain exception taxonomy onto JSON
error responses for a blueprint; every API blueprint calls it once.
"""

import logging

from refportal.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from refportal.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    @bp.errorhandler(ValidationError)
    def _handle_validation(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details or None)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(exc):
        logger.info("Forbidden: %s", exc)
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc))

    return bp
