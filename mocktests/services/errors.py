from rest_framework import status
from rest_framework.exceptions import APIException


class AttemptError(APIException):
    """
    Base for lifecycle failures. DRF renders these directly,
    so services raise them and views let them propagate.
    """
    redirect = None

    def __init__(self, detail=None, code=None, redirect=None):
        super().__init__(detail=detail, code=code)
        if redirect is not None:
            self.redirect = redirect


class AttemptNotFound(AttemptError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class AccessForbidden(AttemptError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Access denied."
    default_code = "forbidden"


class AttemptConflict(AttemptError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Attempt already submitted."
    default_code = "already_submitted"


class InvalidState(AttemptError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "No questions available."
    default_code = "no_questions"


class MalformedAnswer(ValueError):
    """Raised by scoring for a value that cannot be interpreted."""
