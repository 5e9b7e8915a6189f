"""
Pipeline Composer
==================
Every declared (route, method) gets one immutable chain of stages, built once at
startup and shared by all requests to that route:

    1. metrics        observe the request in the rate buckets
    2. cors           (if enabled)
    3. rate limit     (if a cap is set) hard admission gate, 429 when exceeded
    4. delay          (if configured) the one designed suspension point
    5. body parsing   skipped for proxy routes so the raw body streams upstream
    6. metadata       status, headers, cookies from the descriptor
    7. fail sim       503 with no body, skipping the terminal stage
    8. terminal       exactly one response producer

A stage short-circuits by returning a Response or raising a PipelineAbort.
Headers and cookies recorded by earlier stages are attached to whatever
response finally leaves the pipeline, including error responses.
"""

import json
import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs

import httpx
from fastapi import Request, Response
from limits.storage import MemoryStorage, Storage

from mockrig.core.errors import (
    BodyParseError, PipelineAbort, RateLimitExceeded, SimulatedFailure, UpstreamError,
)
from mockrig.core.models import EndpointDescriptor
from mockrig.core.state import SimulationState
from mockrig.services.proxy import ProxyResponder
from mockrig.services.responders import make_responder
from mockrig.utils.rate_buckets import RateBucketTracker
from mockrig.utils.rate_limiter import RouteRateLimiter
from mockrig.utils.simulation import compute_delay, should_fail

logger = logging.getLogger("mockrig")


class RequestContext:
    """Per-request scratch space. Never shared between requests."""

    def __init__(self, request: Request, state: SimulationState, descriptor: EndpointDescriptor):
        self.request = request
        self.state = state
        self.descriptor = descriptor
        self.status_code = 200
        self.headers: List[Tuple[str, str]] = []
        self.cookies: List[Tuple[str, str]] = []
        self.body: Any = None

    @property
    def path_params(self):
        return self.request.path_params

    @property
    def query(self):
        return self.request.query_params

    def apply(self, response: Response) -> Response:
        for name, value in self.headers:
            if name.lower() == "content-type":
                response.headers[name] = value
            else:
                response.headers.append(name, value)
        for name, value in self.cookies:
            response.set_cookie(name, value, path="/")
        return response


class Stage:
    name = "stage"

    async def __call__(self, ctx: RequestContext) -> Optional[Response]:
        raise NotImplementedError


class MetricsStage(Stage):
    name = "metrics"

    def __init__(self, tracker: RateBucketTracker, path: str, method: str):
        self.tracker = tracker
        self.path = path
        self.method = method

    async def __call__(self, ctx):
        self.tracker.observe(self.path, self.method)
        return None


class CorsStage(Stage):
    name = "cors"

    async def __call__(self, ctx):
        ctx.headers.append(("Access-Control-Allow-Origin", "*"))
        return None


class RateLimitStage(Stage):
    name = "rate_limit"

    def __init__(self, limiter: RouteRateLimiter):
        self.limiter = limiter

    async def __call__(self, ctx):
        client = ctx.request.client.host if ctx.request.client else "unknown"
        remaining = self.limiter.hit(client)
        ctx.headers.append(("X-RateLimit-Limit", str(self.limiter.rate)))
        ctx.headers.append(("X-RateLimit-Remaining", str(remaining)))
        return None


class DelayStage(Stage):
    name = "delay"

    def __init__(self, spec, state: SimulationState):
        self.spec = spec
        self.state = state

    async def __call__(self, ctx):
        delay_ms = compute_delay(self.spec, self.state.delay_factor)
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)
        return None


class BodyParsingStage(Stage):
    """JSON, urlencoded form, or raw bytes, picked by Content-Type."""

    name = "body"

    async def __call__(self, ctx):
        raw = await ctx.request.body()
        if not raw:
            return None
        content_type = ctx.request.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type == "application/json" or content_type.endswith("+json"):
            try:
                ctx.body = json.loads(raw)
            except ValueError as e:
                raise BodyParseError(f"Malformed JSON: {e}") from e
        elif content_type == "application/x-www-form-urlencoded":
            form = parse_qs(raw.decode("utf-8", errors="replace"), keep_blank_values=True)
            ctx.body = {k: v[0] if len(v) == 1 else v for k, v in form.items()}
        else:
            ctx.body = raw
        return None


class ResponseMetadataStage(Stage):
    name = "metadata"

    def __init__(self, status: int, headers: Sequence[Tuple[str, str]], cookies: Sequence[Tuple[str, str]]):
        self.status = status
        self.headers = tuple(headers)
        self.cookies = tuple(cookies)

    async def __call__(self, ctx):
        ctx.status_code = self.status
        ctx.headers.extend(self.headers)
        ctx.cookies.extend(self.cookies)
        return None


class FailSimulationStage(Stage):
    name = "fail"

    def __init__(self, state: SimulationState):
        self.state = state

    async def __call__(self, ctx):
        if should_fail(self.state.fail_probability):
            raise SimulatedFailure()
        return None


class TerminalStage(Stage):
    name = "response"

    def __init__(self, responder):
        self.responder = responder
        self.name = getattr(responder, "kind", "response")

    async def __call__(self, ctx):
        return await self.responder(ctx)


class Pipeline:
    def __init__(self, descriptor: EndpointDescriptor, stages: Sequence[Stage], state: SimulationState):
        if not stages or not isinstance(stages[-1], TerminalStage):
            raise ValueError(f"Pipeline for {descriptor} must end with a terminal stage")
        self.descriptor = descriptor
        self.stages: Tuple[Stage, ...] = tuple(stages)
        self.state = state

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    async def run(self, request: Request) -> Response:
        ctx = RequestContext(request, self.state, self.descriptor)
        response = None
        try:
            for stage in self.stages:
                response = await stage(ctx)
                if response is not None:
                    break
        except SimulatedFailure as e:
            logger.debug(f"💥 Simulated failure on {self.descriptor}")
            response = e.to_response()
        except RateLimitExceeded as e:
            logger.warning(f"🚦 {self.descriptor}: {e}")
            response = e.to_response()
        except UpstreamError as e:
            logger.warning(f"⚠️ PROXY ERROR on {self.descriptor}: {e}")
            response = e.to_response()
        except PipelineAbort as e:
            logger.info(f"{self.descriptor}: {e}")
            response = e.to_response()
        except Exception:
            # metadata recorded so far still goes out on the 500
            logger.exception(f"❌ Unhandled error in {self.descriptor}")
            response = Response(status_code=500)

        if response is None:
            response = Response(status_code=ctx.status_code)
        return ctx.apply(response)


class PipelineComposer:
    """Holds the shared collaborators every pipeline is wired to."""

    def __init__(self, state: SimulationState, tracker: RateBucketTracker,
                 http_client: Optional[httpx.AsyncClient] = None, limiter_storage: Optional[Storage] = None):
        self.state = state
        self.tracker = tracker
        self.http_client = http_client
        self.limiter_storage = limiter_storage or MemoryStorage()

    def build_pipeline(self, descriptor: EndpointDescriptor) -> Pipeline:
        """Raises ConfigError when the response source cannot be resolved."""
        method = descriptor.method.value
        self.tracker.register(descriptor.path, method)

        stages: List[Stage] = [MetricsStage(self.tracker, descriptor.path, method)]
        if descriptor.cors:
            stages.append(CorsStage())
        if descriptor.rate:
            limiter = RouteRateLimiter(f"{method} {descriptor.path}", descriptor.rate, self.limiter_storage)
            stages.append(RateLimitStage(limiter))
        if descriptor.delay is not None:
            stages.append(DelayStage(descriptor.delay, self.state))
        if not descriptor.is_proxy:
            stages.append(BodyParsingStage())
        stages.append(ResponseMetadataStage(descriptor.status, descriptor.headers, descriptor.cookies))
        stages.append(FailSimulationStage(self.state))

        if descriptor.is_proxy:
            responder = ProxyResponder(descriptor.response.target, self._client())
        else:
            responder = make_responder(descriptor)
        stages.append(TerminalStage(responder))

        return Pipeline(descriptor, stages, self.state)

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=60.0, follow_redirects=False)
        return self.http_client
