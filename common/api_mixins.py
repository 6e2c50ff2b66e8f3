# common/api_mixins.py
from rest_framework.response import Response

from common.exceptions import ServiceError


class ServiceErrorMixin:
    """
    Maps ServiceError subclasses raised by the service layer to JSON
    responses carrying the error's code tag, so clients never need to
    parse the human message.
    """

    def handle_exception(self, exc):
        if isinstance(exc, ServiceError):
            return service_error_response(exc)
        return super().handle_exception(exc)


def service_error_response(exc: ServiceError) -> Response:
    payload = {"detail": exc.detail, "code": exc.code}
    payload.update(exc.extra)
    response = Response(payload, status=exc.status_code)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        response["Retry-After"] = str(retry_after)
    return response
