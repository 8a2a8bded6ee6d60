"""
Portal error taxonomy

Every failure the data layer reports is one of these. ``message`` is meant
for the person using the portal and is passed through unchanged.
"""


class PortalError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """Missing or malformed input, detected before anything is written."""


class TransportError(PortalError):
    """The store could not be reached or rejected the request."""


class NotFoundError(PortalError):
    """The target of a mutation no longer exists."""


class AuthError(PortalError):
    """The identity provider rejected the credentials or the registration."""


class InvalidTransitionError(PortalError):
    """An application status change that is not pending -> approved/rejected."""
