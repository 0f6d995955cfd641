"""
Dispatcher module: validation, retry policy and orchestration.

Public API:
- DispatchOrchestrator: Runs a request through registry, adapter and store
- DispatchRequest / DispatchResult: Input and output of a dispatch
- RetryPolicy: Bounded exponential backoff
"""

from kubellm.dispatcher.orchestrator import (
    DispatchOrchestrator,
    DispatchRequest,
    DispatchResult,
    validate_request,
)
from kubellm.dispatcher.retry import RetryPolicy

__all__ = [
    "DispatchOrchestrator",
    "DispatchRequest",
    "DispatchResult",
    "RetryPolicy",
    "validate_request",
]
