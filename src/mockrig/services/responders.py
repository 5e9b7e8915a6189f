"""
Response Producers
===================
The terminal stage of every non-proxy pipeline. The producer is picked once,
from the descriptor's ResponseSource variant, when the pipeline is built.
"""

import json
import inspect
import logging
from pathlib import Path

from fastapi.responses import JSONResponse, PlainTextResponse, Response

from mockrig.core.errors import ConfigError
from mockrig.core.models import CustomHandler, EndpointDescriptor, NoContent, StaticJson, StaticText
from mockrig.utils.handler_loader import exported_handlers
from mockrig.utils.templating import render_template

logger = logging.getLogger("mockrig")


def _read_asset(path: Path, mode: str = "r"):
    if not path.is_file():
        raise ConfigError(f"Response file not found: {path}")
    try:
        if mode == "rb":
            return path.read_bytes()
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read response file {path}: {e}") from e


class StaticJsonResponder:
    kind = "static_json"

    def __init__(self, source: StaticJson):
        self.file = source.file
        self.template = _read_asset(source.file)
        try:
            json.loads(render_template(self.template))
        except ValueError as e:
            raise ConfigError(f"{source.file.name} is not a valid JSON template: {e}") from e

    async def __call__(self, ctx) -> Response:
        body = json.loads(render_template(self.template))
        return JSONResponse(body, status_code=ctx.status_code)


class StaticTextResponder:
    kind = "static_text"

    def __init__(self, source: StaticText):
        self.file = source.file
        self.media_type = source.media_type
        self.content = _read_asset(source.file, "rb")

    async def __call__(self, ctx) -> Response:
        return Response(self.content, status_code=ctx.status_code, media_type=self.media_type)


class NoContentResponder:
    kind = "no_content"

    async def __call__(self, ctx) -> Response:
        return Response(status_code=ctx.status_code)


class CustomHandlerResponder:
    """
    Wraps a user handler function. The handler gets the RequestContext and may
    return a Response, something JSON-serialisable, a str, bytes or None; sync
    and async functions both work.
    """

    kind = "custom_handler"

    def __init__(self, source: CustomHandler):
        handlers = exported_handlers(source.module)
        if source.function not in handlers:
            raise ConfigError(f"{source.module.name} has no '{source.function}' handler")
        self.handler = handlers[source.function]
        self.label = f"{source.module.name}:{source.function}"

    async def __call__(self, ctx) -> Response:
        result = self.handler(ctx)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, Response):
            return result
        if result is None:
            return Response(status_code=ctx.status_code)
        if isinstance(result, bytes):
            return Response(result, status_code=ctx.status_code)
        if isinstance(result, str):
            return PlainTextResponse(result, status_code=ctx.status_code)
        return JSONResponse(result, status_code=ctx.status_code)


def make_responder(descriptor: EndpointDescriptor):
    source = descriptor.response
    if isinstance(source, NoContent):
        return NoContentResponder()
    if isinstance(source, StaticJson):
        return StaticJsonResponder(source)
    if isinstance(source, StaticText):
        return StaticTextResponder(source)
    if isinstance(source, CustomHandler):
        return CustomHandlerResponder(source)
    raise ConfigError(f"{descriptor}: no response producer for {source!r}")
