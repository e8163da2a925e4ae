from typing import Optional


class TrackerError(Exception):
    """Base class for errors raised by the tracker services."""

    code = "TRACKER_ERROR"


class CatalogError(TrackerError):
    """Any failure while talking to the show catalog."""

    code = "CATALOG_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ShowNotFoundError(TrackerError):
    code = "SHOW_NOT_FOUND"


class EpisodeNotFoundError(TrackerError):
    """The episode does not exist or belongs to another show."""

    code = "EPISODE_NOT_FOUND"


class ShowNotTrackedError(TrackerError):
    """The user is not subscribed to the show."""

    code = "SHOW_NOT_TRACKED"


class UserNotFoundError(TrackerError):
    code = "USER_NOT_FOUND"


class NoEmailOrTokenError(TrackerError):
    code = "NO_EMAIL_OR_TOKEN_PASSED"


class PasswordResetExpiredError(TrackerError):
    code = "PASSWORD_RESET_EXPIRED"


class PasswordRemovalError(TrackerError):
    """A password may only be removed once a passkey exists."""

    code = "PASSKEY_REQUIRED"


class LoginRequired(Exception):
    """Raised by route dependencies, turned into a redirect to /login."""

    def __init__(self, redirect_to: str = "/"):
        super().__init__(redirect_to)
        self.redirect_to = redirect_to


class LoggedOut(Exception):
    """The session points to a user that no longer exists."""
