import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """
    DRF handles its own exceptions (validation, auth, 404...).
    Anything else is logged with traceback and reported as a plain 500.
    """
    response = exception_handler(exc, context)
    if response is not None:
        return response

    view = context.get("view")
    logger.error(
        "Unhandled error in %s: %s",
        view.__class__.__name__ if view else "unknown view",
        exc,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return Response({"detail": "Server error."}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
