"""
Custom Exception Classes for the Community Feed

This module defines custom exceptions for better error handling and
categorization of failures across the feed cache, its mutators and the
remote store clients.
"""


class CommunityFeedError(Exception):
    """Base exception for all Community Feed errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(CommunityFeedError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Cache Mutation Errors
# =============================================================================

class NotFoundError(CommunityFeedError):
    """Raised when an operation references a record id absent from the cache."""

    def __init__(self, record_id: str, message: str = None):
        self.record_id = record_id
        super().__init__(message or f"Record not found: {record_id}")


class BusyError(CommunityFeedError):
    """Raised when a mutation is already in flight for the same record and field."""

    def __init__(self, record_id: str, field: str):
        self.record_id = record_id
        self.field = field
        super().__init__(f"Mutation already in flight for {record_id}.{field}")


# =============================================================================
# Remote Store Errors
# =============================================================================

class RemoteFailureError(CommunityFeedError):
    """Raised when a call to the remote store rejects or times out.

    The cache is always left at its last-known-good state when this is raised,
    so callers may retry the operation.
    """
    retryable = True


class SubscriptionError(RemoteFailureError):
    """Raised when a change feed subscription cannot be established."""
    pass


# =============================================================================
# Change Feed Errors
# =============================================================================

class MalformedEventError(CommunityFeedError):
    """Raised when a change event is missing required fields."""
    pass


# =============================================================================
# Content Errors
# =============================================================================

class ContentRejectedError(CommunityFeedError):
    """Raised when content fails moderation before being published."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Content rejected: {reason}")


class InvalidReportError(CommunityFeedError):
    """Raised when a content report names an unknown target type or no reason."""
    pass


# =============================================================================
# AI Service Errors
# =============================================================================

class AIServiceError(CommunityFeedError):
    """Raised when the AI service cannot complete a request."""
    pass
