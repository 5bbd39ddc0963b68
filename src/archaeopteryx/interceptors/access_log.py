"""
=============================================================================
ACCESS LOG INTERCEPTOR
=============================================================================

Built-in interceptors that write one line per request to the
"archaeopteryx.access" logger and hand the request on untouched.

    archaeopteryx -b access-log        text, Apache-like
    archaeopteryx -A access-log-json   one JSON object per line

As a before-interceptor the line is written when the request arrives; as
an after-interceptor, once the response has been sent.

The access logger can be routed on its own:

    logging.getLogger("archaeopteryx.access").addHandler(file_handler)

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass, asdict

from ..http.request import HTTPRequest
from .registry import register_interceptor


logger = logging.getLogger("archaeopteryx.access")


@dataclass
class AccessRecord:
    """One access log entry."""

    client_ip: str
    method: str
    target: str
    version: str
    user_agent: str
    timestamp: str

    @classmethod
    def from_request(cls, request: HTTPRequest) -> "AccessRecord":
        return cls(
            client_ip=request.client_address[0] or "-",
            method=request.method,
            target=request.target,
            version=request.version,
            user_agent=request.user_agent or "-",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def to_text(self) -> str:
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.target} {self.version}" "{self.user_agent}"'
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class AccessLog:
    """Interceptor that logs each request it sees."""

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        if log_format not in ("text", "json"):
            raise ValueError(f"Unknown access log format: {log_format!r}")
        self.log_format = log_format
        self.log_level = log_level

    def __call__(self, request: HTTPRequest) -> HTTPRequest:
        if isinstance(request, HTTPRequest):
            record = AccessRecord.from_request(request)
            line = record.to_json() if self.log_format == "json" else record.to_text()
            logger.log(self.log_level, line)
        return request


access_log = register_interceptor("access-log")(AccessLog())
access_log_json = register_interceptor("access-log-json")(AccessLog(log_format="json"))
