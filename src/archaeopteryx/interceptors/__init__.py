"""
=============================================================================
INTERCEPTORS - Request → Request Hooks Around Dispatch
=============================================================================

    base.py         InterceptorPipeline (left-to-right composition)
    registry.py     named interceptors and "module:attr" references
    access_log.py   built-in "access-log" / "access-log-json"

=============================================================================
"""

from .registry import (
    Interceptor,
    register_interceptor,
    registered_interceptors,
    resolve_interceptor,
)
from .base import InterceptorPipeline, as_pipeline, interceptor_name
from .access_log import AccessLog, AccessRecord

__all__ = [
    "Interceptor",
    "register_interceptor",
    "registered_interceptors",
    "resolve_interceptor",
    "InterceptorPipeline",
    "as_pipeline",
    "interceptor_name",
    "AccessLog",
    "AccessRecord",
]
