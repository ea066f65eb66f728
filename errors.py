"""Exceptions raised by the stores; main.py maps each one to an HTTP status."""


class BarterError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BarterError):
    status_code = 404


class InvalidInputError(BarterError):
    status_code = 400


class AuthenticationError(BarterError):
    status_code = 401


class PermissionDeniedError(BarterError):
    status_code = 403


class MediaValidationError(InvalidInputError):
    pass


class AuthProviderError(BarterError):
    """Error message returned by the hosted identity provider, e.g. EMAIL_EXISTS."""

    status_code = 400

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code or message
        if self.code in ("INVALID_ID_TOKEN", "TOKEN_EXPIRED", "USER_NOT_FOUND", "INVALID_LOGIN_CREDENTIALS",
                         "INVALID_PASSWORD", "EMAIL_NOT_FOUND", "USER_DISABLED"):
            self.status_code = 401
