"""
Application exceptions.

Raised from the service layer and turned into
``{"success": false, "error": message}`` responses by the handlers
registered in ``sufrah.main``.
"""


class ApiError(Exception):
    """An error with an HTTP status and a message safe to show the user."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(ApiError):
    pass


class OnboardingError(ApiError):
    """A WhatsApp onboarding step could not be completed."""
