"""
Authentication module.

Provides credential lifecycle management for Azure Monitor Log Analytics.

Components:
    - LogAnalyticsCredentialProvider: async azure-identity credential with
      validation, caching and retry with backoff
"""

from .credentials import (
    LOG_ANALYTICS_SCOPE,
    LogAnalyticsCredentialProvider,
    auth_backoff_ms,
)

__all__ = [
    "LogAnalyticsCredentialProvider",
    "LOG_ANALYTICS_SCOPE",
    "auth_backoff_ms",
]
