"""
Error taxonomy for the key server.

Every error carries a short machine-readable ``reason`` and the HTTP status
the Flask layer answers with. Verification outcomes are *not* errors; they
come back as ``VerifyResult`` objects.
"""


class KeyServerError(Exception):
    reason = "server_error"
    status = 500

    def __init__(self, message=None, reason=None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class MissingParameter(KeyServerError):
    reason = "missing_params"
    status = 400


class NotFound(KeyServerError):
    reason = "not_found"
    status = 404


class NotOwner(KeyServerError):
    reason = "bound_to_another_uid"
    status = 403


class AlreadyExpired(KeyServerError):
    reason = "already_expired"
    status = 410


class ExtendLimitReached(KeyServerError):
    reason = "extend_limit_reached"
    status = 429


class StorageFailure(KeyServerError):
    """Record store could not be read or written"""
    reason = "server_error"
    status = 500


class BadToken(KeyServerError):
    """Signed token could not be parsed"""
    reason = "not_found"
    status = 400


class BadSignature(BadToken):
    reason = "bad_signature"
