# communityeats/core/errors.py

class CommunityEatsError(Exception):
    """Base error carrying the HTTP status it maps to and a client-safe message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(CommunityEatsError):
    status_code = 400


class Unauthorized(CommunityEatsError):
    status_code = 401


class Forbidden(CommunityEatsError):
    status_code = 403


class NotFound(CommunityEatsError):
    status_code = 404


class Unprocessable(CommunityEatsError):
    status_code = 422
