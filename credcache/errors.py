"""
Exceptions raised by credcache.
"""


class CredCacheError(Exception):
    """Base class for all credcache errors."""


class ConfigurationError(CredCacheError):
    """Raised when the selected profile cannot be used to obtain credentials."""


class MFAError(CredCacheError):
    """Raised when an MFA token code could not be obtained."""


class RetrievalError(CredCacheError):
    """Raised when the upstream credential exchange fails."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class CachePersistenceError(CredCacheError):
    """
    Raised when freshly obtained credentials could not be written to the cache.

    The credentials are attached so the caller can still use them.
    """

    def __init__(self, message, credentials):
        super().__init__(message)
        self.credentials = credentials
