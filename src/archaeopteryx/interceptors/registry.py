"""
=============================================================================
INTERCEPTOR REGISTRY
=============================================================================

Interceptors can be given three ways, on the command line, in
archaeopteryx.json, or in ServerConfig.before/after:

    callable                 used as is (Python API only)
    "access-log"             a name registered with @register_interceptor
    "mypkg.hooks:strip_qs"   imported with importlib

    @register_interceptor("strip-query")
    def strip_query(request):
        request.query_params = {}
        return request

=============================================================================
"""

import importlib
import logging
from typing import Any, Callable, Dict, List

from ..errors import ConfigurationError


logger = logging.getLogger(__name__)


Interceptor = Callable[[Any], Any]

_REGISTRY: Dict[str, Interceptor] = {}


def register_interceptor(name: str) -> Callable[[Interceptor], Interceptor]:
    """Decorator that publishes an interceptor under `name`."""

    def decorator(func: Interceptor) -> Interceptor:
        if name in _REGISTRY and _REGISTRY[name] is not func:
            logger.warning(f"Interceptor {name!r} registered twice, keeping the last one")
        _REGISTRY[name] = func
        return func

    return decorator


def registered_interceptors() -> List[str]:
    """Names of every registered interceptor."""
    return sorted(_REGISTRY)


def resolve_interceptor(ref: Any) -> Interceptor:
    """
    Turn an interceptor reference into a callable.

    Raises:
        ConfigurationError: Unknown name, failed import, or not callable.
    """
    if callable(ref):
        return ref

    if not isinstance(ref, str):
        raise ConfigurationError(f"Invalid interceptor: {ref!r}")

    if ref in _REGISTRY:
        return _REGISTRY[ref]

    if ":" not in ref:
        known = ", ".join(registered_interceptors()) or "none"
        raise ConfigurationError(f"Unknown interceptor {ref!r} (registered: {known})")

    module_name, _, attr_path = ref.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for attr in attr_path.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load interceptor {ref!r}: {e}") from e

    if not callable(target):
        raise ConfigurationError(f"Interceptor {ref!r} is not callable")
    return target
