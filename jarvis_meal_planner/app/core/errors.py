"""Error taxonomy shared by the ranking and reroll services.

Every error carries a stable ``error_code`` and the HTTP status the API layer
maps it to, so route handlers never need to translate exceptions themselves.
"""

from starlette import status


class MealPlannerError(Exception):
    error_code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MealPlannerError):
    """Malformed caller input or malformed generative output. Never partially applied."""

    error_code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(MealPlannerError):
    error_code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(MealPlannerError):
    """Embedding or generation service failed. The first failure is terminal."""

    error_code = "upstream_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class ConsistencyError(MealPlannerError):
    """The atomic commit did not persist; the transaction was rolled back."""

    error_code = "consistency_error"
    status_code = status.HTTP_409_CONFLICT
