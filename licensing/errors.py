"""Error taxonomy shared by the licensing services.

Every service raises one of these; ``app.create_app`` renders them as
``{"success": False, "error": ...}`` with the class' ``http_status``.
"""
from typing import Dict


class LicensingError(Exception):
    """Base class for every error the licensing core surfaces."""
    http_status = 400

    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        payload = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LicensingError):
    """Malformed or missing input."""
    http_status = 400


class NotFound(LicensingError):
    http_status = 404


class InvalidState(LicensingError):
    """The entity's current state forbids the requested transition."""
    http_status = 409


class Mismatch(InvalidState):
    """Activation requested for the wrong (or an inactive) software."""


class AuthorizationError(LicensingError):
    """Quota exceeded, product not assigned, or resource not owned."""
    http_status = 403


class IntegrityViolation(LicensingError):
    """Would break a structural invariant: forest cycle, depth, quota."""
    http_status = 422


class TransientStoreError(LicensingError):
    """Begin/commit failed in the store. Retryable by the client."""
    http_status = 503


class AuthenticationError(LicensingError):
    """Bad username or password."""
    http_status = 401


class LoginLocked(AuthenticationError):
    """Too many failed logins; retry after the lock expires."""
    http_status = 429
