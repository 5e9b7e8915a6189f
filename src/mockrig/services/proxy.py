"""
Proxy Service
==============
Reverse-proxy passthrough for endpoints declared with "proxy": the request's
method, path, query, headers and raw body go upstream unchanged, and the
upstream answer streams back. Headers and cookies configured on the endpoint are
appended by the pipeline afterwards.

Upstream trouble never crashes the server: connection and protocol errors
become 502, timeouts become 504.
"""

import time
import logging

import httpx
from fastapi import BackgroundTasks
from fastapi.responses import Response, StreamingResponse

from mockrig.core.errors import UpstreamError

logger = logging.getLogger("mockrig")

HOP_BY_HOP_HEADERS = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailer", "transfer-encoding", "upgrade",
})


class ProxyResponder:
    kind = "proxy"

    def __init__(self, target: str, client: httpx.AsyncClient):
        self.target = target.rstrip("/")
        self.client = client

    def _upstream_url(self, request) -> str:
        url = self.target + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url

    async def __call__(self, ctx) -> Response:
        request = ctx.request
        headers = [
            (k, v) for k, v in request.headers.items()
            if k.lower() != "host" and k.lower() not in HOP_BY_HOP_HEADERS
        ]
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers

        upstream_request = self.client.build_request(
            method=request.method,
            url=self._upstream_url(request),
            headers=headers,
            content=request.stream() if has_body else None,
        )

        start_time = time.time()
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamError(self.target, str(e) or "upstream timed out", status_code=504) from e
        except (httpx.ConnectError, httpx.RemoteProtocolError) as e:
            raise UpstreamError(self.target, str(e) or "upstream unreachable") from e
        except httpx.HTTPError as e:
            raise UpstreamError(self.target, str(e) or type(e).__name__) from e

        latency_ms = (time.time() - start_time) * 1000
        logger.debug(f"↪ {request.method} {upstream_request.url} → {upstream.status_code} ({latency_ms:.0f}ms)")

        cleanup = BackgroundTasks()
        cleanup.add_task(upstream.aclose)
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=cleanup,
        )
        for name, value in upstream.headers.multi_items():
            if name.lower() not in HOP_BY_HOP_HEADERS:
                response.headers.append(name, value)
        return response
