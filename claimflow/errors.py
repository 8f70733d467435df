"""
Error taxonomy for workflow runs.

Run-level errors (authentication, egress) abort the whole run. Locator errors
fail one batch item. Field validation never raises; it is reported per field.
"""


class ClaimflowError(Exception):
    """Base class for all errors raised by claimflow."""


class NetworkConfigurationError(ClaimflowError):
    """No usable egress path (proxy retries exhausted and direct not allowed)."""


class AuthenticationError(ClaimflowError):
    """A portal rejected the credentials or the login form never cleared."""

    def __init__(self, portal, message=''):
        self.portal = portal
        super().__init__(f"{portal}: {message}" if message else f"{portal}: authentication failed")


class LocatorNotFoundError(ClaimflowError):
    """No locator strategy could find the element."""

    def __init__(self, target, tried=None):
        self.target = target
        self.tried = list(tried or [])
        detail = f" (tried: {', '.join(self.tried)})" if self.tried else ''
        super().__init__(f"Element not found: {target}{detail}")


class UnsupportedPortalError(ClaimflowError):
    """No implemented portal for the record's pay type, or the portal cannot do what was asked."""


class RunCanceled(ClaimflowError):
    """Raised inside a run when the cancel flag has been observed."""


class InvalidTransition(ClaimflowError):
    """Run status change that would break the run state machine."""


# Errors that abort a run instead of failing a single item
FATAL_ERRORS = (AuthenticationError, NetworkConfigurationError, RunCanceled)
