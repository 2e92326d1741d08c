"""
Error taxonomy shared by the lifecycle rules and the route handlers.

Every error is rendered by the app as {"error": message} with the class's status code.
"""


class CivicError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class InvalidInput(CivicError):
    status_code = 400


class Unauthorized(CivicError):
    status_code = 401


class Forbidden(CivicError):
    status_code = 403


class NotFound(CivicError):
    status_code = 404


class Conflict(CivicError):
    status_code = 409
