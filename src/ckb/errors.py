"""Custom exceptions for knowledge base operations."""


class CKBError(Exception):
    """Base exception for knowledge base operations."""
    status_code = 500


class AuthenticationRequired(CKBError):
    """Raised when a request carries no usable identity."""
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class InsufficientClearance(CKBError):
    """Raised when a requester's clearance is below what an operation needs."""
    status_code = 403

    def __init__(self, required_level: int, user_level: int, action: str = "access this resource"):
        self.required_level = required_level
        self.user_level = user_level
        super().__init__(
            f"Insufficient clearance to {action} (required: {required_level}, user level: {user_level})"
        )


class NotFound(CKBError):
    """Raised when an article, cluster or result does not exist."""
    status_code = 404

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class ValidationError(CKBError):
    """Raised on malformed input."""
    status_code = 400


class InternalError(CKBError):
    """Raised on storage or compute failure."""
    status_code = 500


class ClusteringCancelled(InternalError):
    """Raised when a clustering run is cancelled or times out."""

    def __init__(self, algorithm: str, reason: str = "cancelled"):
        self.algorithm = algorithm
        super().__init__(f"Clustering run '{algorithm}' {reason}; previous assignments kept")
