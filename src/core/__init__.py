"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    auth        - Azure credential lifecycle for Log Analytics
    resilience  - Circuit breaker, rate-limit aware retry with backoff
    logging     - Structured JSON logging with correlation IDs
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization helpers

Design Principles:
    - No dependency on the log fetcher package
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory, ErrorClassifier, RetryClassifier

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
    "RetryClassifier",
]
