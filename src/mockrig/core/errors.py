"""
Error Taxonomy
===============
Startup errors stop the server from coming up. Per-request errors derive from
PipelineAbort and know how to render themselves as an HTTP response, so a stage
can simply raise and let the pipeline turn it into the caller-facing answer.
"""

from typing import Optional

from fastapi.responses import JSONResponse, PlainTextResponse, Response


class MockRigError(Exception):
    """Base class for every error raised by the mock server."""


class ConfigError(MockRigError):
    """Malformed or missing endpoint descriptor, or a missing asset file."""


class ShutdownTimeout(MockRigError):
    """In-flight connections did not drain within the grace period."""


# ── Per-request aborts ──

class PipelineAbort(MockRigError):
    status_code = 500

    def to_response(self) -> Response:
        return Response(status_code=self.status_code)


class SimulatedFailure(PipelineAbort):
    """Fail simulation fired. Expected behaviour, never logged as an error."""

    status_code = 503


class RateLimitExceeded(PipelineAbort):
    status_code = 429

    def __init__(self, limit: int, retry_after: float):
        super().__init__(f"Rate limit of {limit} requests per second exceeded")
        self.limit = limit
        self.retry_after = retry_after

    def to_response(self) -> Response:
        return PlainTextResponse(
            "Too many requests, please try again later.",
            status_code=self.status_code,
            headers={
                "Retry-After": str(max(1, int(round(self.retry_after)))),
                "X-RateLimit-Limit": str(self.limit),
                "X-RateLimit-Remaining": "0",
            },
        )


class BodyParseError(PipelineAbort):
    status_code = 400

    def to_response(self) -> Response:
        return JSONResponse({"error": "Invalid request body", "detail": str(self)}, status_code=self.status_code)


class UpstreamError(PipelineAbort):
    """Proxy target unreachable, timing out, or breaking the protocol."""

    def __init__(self, target: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Upstream {target} failed: {reason}")
        self.target = target
        self.reason = reason
        self.status_code = status_code or 502

    def to_response(self) -> Response:
        title = "Gateway Timeout" if self.status_code == 504 else "Bad Gateway"
        return JSONResponse(
            {"error": title, "target": self.target, "detail": self.reason},
            status_code=self.status_code,
        )
