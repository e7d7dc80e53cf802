"""Custom exceptions for the video storefront"""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for the storefront"""
    pass


class AuthError(StorefrontError):
    """Authentication failure shown to the user"""
    pass


class UserNotFound(AuthError):
    """No user registered with the given email"""

    def __init__(self, message: str = "User not found. Check your credentials."):
        super().__init__(message)


class InvalidCredentials(AuthError):
    """Password does not match the stored hash"""

    def __init__(self, message: str = "Invalid password. Please try again."):
        super().__init__(message)


class SessionCreationFailed(AuthError):
    """Session record could not be persisted"""

    def __init__(self, message: str = "Failed to create session. Please try again."):
        super().__init__(message)


class SessionExpired(AuthError):
    """Session reached its expiry time"""

    def __init__(self, message: str = "Session expired"):
        super().__init__(message)


class SessionInvalid(AuthError):
    """Session is unknown, deactivated or points to a missing user"""

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message)


class PersistenceError(StorefrontError):
    """Error from the document store"""
    pass


class DocumentNotFound(PersistenceError):
    """Requested document does not exist"""

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' not found in '{collection}'")


class PaymentProviderError(StorefrontError):
    """Error from PayPal or Stripe"""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class InvalidPurchaseTransition(StorefrontError):
    """Purchase state change not allowed from the current state"""
    pass


class NotificationDeliveryError(StorefrontError):
    """Confirmation email could not be delivered. Never fatal for a purchase."""
    pass


class ConfigurationMissing(StorefrontError):
    """Required configuration (credentials, keys) is absent"""
    pass
