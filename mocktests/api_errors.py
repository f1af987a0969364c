from rest_framework.views import exception_handler

from .services.errors import AttemptError


def api_exception_handler(exc, context):
    """
    DRF's handler plus a stable ``code`` and, where the engine gave
    one, a ``redirect`` hint (result page, submit endpoint).
    """
    response = exception_handler(exc, context)

    if response is not None and isinstance(exc, AttemptError):
        response.data = {
            "detail": str(exc.detail),
            "code": exc.get_codes(),
        }
        if exc.redirect:
            response.data["redirect"] = exc.redirect

    return response
