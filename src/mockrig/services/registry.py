"""
Endpoint Registry
==================
Maps (route pattern, method) to its built pipeline and mounts everything on
the FastAPI app. Populated once at startup; routes never change afterwards.
"""

import logging
from typing import Dict, List, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import Response

from mockrig.core.errors import ConfigError
from mockrig.core.models import EndpointDescriptor
from mockrig.services.pipeline import Pipeline, PipelineComposer

logger = logging.getLogger("mockrig")


class EndpointRegistry:
    def __init__(self, composer: PipelineComposer):
        self.composer = composer
        self._pipelines: Dict[Tuple[str, str], Pipeline] = {}

    def build(self, descriptors: List[EndpointDescriptor]) -> None:
        for descriptor in descriptors:
            if descriptor.key in self._pipelines:
                raise ConfigError(f"Endpoint {descriptor} is declared more than once")
            self._pipelines[descriptor.key] = self.composer.build_pipeline(descriptor)
        logger.info(f"🔧 Built {len(self._pipelines)} endpoint pipelines")

    def get(self, path: str, method: str) -> Pipeline:
        return self._pipelines.get((path, method.upper()))

    def __len__(self) -> int:
        return len(self._pipelines)

    def __iter__(self):
        return iter(self._pipelines.values())

    def describe(self) -> List[Dict]:
        return [
            {
                "method": p.descriptor.method.value,
                "path": p.descriptor.path,
                "stages": p.stage_names,
            }
            for p in self._pipelines.values()
        ]

    def mount(self, app: FastAPI) -> None:
        cors_methods: Dict[str, List[str]] = {}
        for pipeline in self._pipelines.values():
            d = pipeline.descriptor
            app.add_api_route(
                d.path,
                _route_endpoint(pipeline),
                methods=[d.method.value],
                include_in_schema=False,
                name=f"{d.method.value} {d.path}",
            )
            if d.cors:
                cors_methods.setdefault(d.path, []).append(d.method.value)
            logger.info(f"  ↪ {d.method.value:<6} {d.path}  [{' → '.join(pipeline.stage_names)}]")

        for path, methods in cors_methods.items():
            app.add_api_route(
                path,
                _preflight_endpoint(methods),
                methods=["OPTIONS"],
                include_in_schema=False,
                name=f"OPTIONS {path}",
            )


def _route_endpoint(pipeline: Pipeline):
    async def endpoint(request: Request):
        return await pipeline.run(request)

    return endpoint


def _preflight_endpoint(methods: List[str]):
    allow_methods = ",".join(sorted(set(methods)))

    async def preflight(request: Request):
        headers = {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": allow_methods,
            "Vary": "Access-Control-Request-Headers",
        }
        requested = request.headers.get("access-control-request-headers")
        if requested:
            headers["Access-Control-Allow-Headers"] = requested
        return Response(status_code=204, headers=headers)

    return preflight