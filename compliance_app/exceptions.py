"""
Custom exceptions for the compliance tracker backend.

Every failure is scoped to the current user action; routes translate these
into the `{"success": False, "error": ...}` envelope.
"""
from typing import Optional


class ComplianceAppError(Exception):
    """Base exception for all compliance tracker errors."""
    pass


# =============================================================================
# Identity / store exceptions
# =============================================================================

class UnauthenticatedError(ComplianceAppError):
    """Raised when a store or profile operation has no resolved user id."""

    def __init__(self, message: str = "User not authenticated."):
        super().__init__(message)


class InvalidCredentialsError(ComplianceAppError):
    """Raised when sign-in fails."""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class EmailAlreadyRegisteredError(ComplianceAppError):
    """Raised when sign-up uses an email that already has an account."""

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already registered")


class DocumentNotFoundError(ComplianceAppError):
    """Raised when an update targets a document that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document not found: {path}")


# =============================================================================
# Generative endpoint exceptions
# =============================================================================

class GenerativeEndpointError(ComplianceAppError):
    """Raised on a non-success response or transport failure from Gemini."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StructuredPayloadError(ComplianceAppError):
    """Raised when a structured payload does not match the expected shape."""
    pass


# =============================================================================
# Onboarding exceptions
# =============================================================================

class OnboardingError(ComplianceAppError):
    """Base class for onboarding flow errors."""
    pass


class MissingBusinessDataError(OnboardingError):
    """Raised when a step needs the onboarding business but none exists yet."""

    def __init__(self, message: str = "Missing business data: the business has not been created yet."):
        super().__init__(message)


class InvalidPhaseError(OnboardingError):
    """Raised when an action is submitted in the wrong onboarding phase."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Action requires phase '{expected}' but session is in '{actual}'")


class NoActiveSessionError(OnboardingError):
    """Raised when no onboarding session exists for the user."""

    def __init__(self, message: str = "No onboarding session in progress. Start onboarding first."):
        super().__init__(message)
