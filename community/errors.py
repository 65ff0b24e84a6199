"""Error taxonomy for the community board.

Every error carries the HTTP status it maps to, so the transport layer can
render it without knowing the individual classes.
"""


class CommunityError(Exception):
    """Base class for errors raised by the community core"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(CommunityError):
    """Required fields missing or blank"""
    status_code = 400


class Unauthenticated(CommunityError):
    """No credential, or the credential did not verify"""
    status_code = 401


class Forbidden(CommunityError):
    """Caller is neither the owner nor an administrator"""
    status_code = 403


class NotFound(CommunityError):
    """Referenced post, comment or user does not exist"""
    status_code = 404


class StoreUnavailable(CommunityError):
    """The backing store failed (timeout, connection or protocol error)"""
    status_code = 500
