# common/exceptions.py


class ServiceError(Exception):
    """
    Base for every error the service layer reports to callers.

    `code` is a stable tag the API layer maps to a user-facing message,
    `status_code` the HTTP status it maps to, and `extra` carries
    structured context (offending product, available quantity, ...).
    """

    code = "service_error"
    status_code = 400

    def __init__(self, detail=None, **extra):
        self.detail = detail or self.default_detail()
        self.extra = extra
        super().__init__(self.detail)

    def default_detail(self):
        return self.code.replace("_", " ").capitalize()
