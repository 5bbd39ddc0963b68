"""
=============================================================================
INTERCEPTOR PIPELINE
=============================================================================

An interceptor is any callable that takes a request and returns a
request. A pipeline applies a list of them left to right, each one
getting the previous one's result:

    pipeline = InterceptorPipeline([add_header, rewrite_path])

    pipeline(request) == rewrite_path(add_header(request))

    InterceptorPipeline([])(request) is request

There is no short-circuit and no response phase: interceptors only see
and reshape the request. The server runs two pipelines:

    before   result goes to the router
    after    runs once the response is written, result thrown away

Whatever an interceptor returns is passed on unchanged, even when it is
not a request. For the before pipeline that ends at the router, which
rejects it as a ProtocolViolation.

=============================================================================
"""

import logging
from typing import Any, Iterable, List, Union

from ..errors import InterceptorError, report_error
from .registry import Interceptor, resolve_interceptor


logger = logging.getLogger(__name__)


def interceptor_name(interceptor: Interceptor) -> str:
    """Readable name for log lines."""
    return getattr(
        interceptor,
        "__qualname__",
        getattr(interceptor, "__name__", type(interceptor).__name__),
    )


class InterceptorPipeline:
    """
    Sequential composition of interceptors.

    Accepts None, one interceptor, or a list. Entries may be callables or
    references understood by resolve_interceptor().
    """

    def __init__(self, interceptors: Union[None, Any, Iterable[Any]] = None):
        if interceptors is None:
            refs: List[Any] = []
        elif callable(interceptors) or isinstance(interceptors, str):
            refs = [interceptors]
        else:
            refs = list(interceptors)

        self._interceptors: List[Interceptor] = [resolve_interceptor(r) for r in refs]
        for interceptor in self._interceptors:
            logger.debug(f"Added interceptor: {interceptor_name(interceptor)}")

    def add(self, interceptor: Any) -> "InterceptorPipeline":
        """Append an interceptor. Returns self for chaining."""
        self._interceptors.append(resolve_interceptor(interceptor))
        return self

    def __call__(self, request: Any) -> Any:
        """
        Run every interceptor in order.

        Raises:
            InterceptorError: Wrapping whatever an interceptor raised.
        """
        result = request
        for interceptor in self._interceptors:
            try:
                result = interceptor(result)
            except Exception as e:
                raise InterceptorError(interceptor_name(interceptor), e) from e
        return result

    def run_detached(self, request: Any, silent: bool = False, debug: bool = False) -> None:
        """
        Run the pipeline for its side effects only.

        Failures are logged and dropped; the caller never sees them.
        """
        if not self._interceptors:
            return
        try:
            self(request)
        except InterceptorError as e:
            report_error(logger, e, silent=silent, debug=debug, context="After interceptor")

    def __len__(self) -> int:
        return len(self._interceptors)

    def __iter__(self):
        return iter(self._interceptors)

    def __bool__(self) -> bool:
        return True


def as_pipeline(value: Union[None, Any, InterceptorPipeline]) -> InterceptorPipeline:
    """Wrap `value` in a pipeline unless it already is one."""
    if isinstance(value, InterceptorPipeline):
        return value
    return InterceptorPipeline(value)


