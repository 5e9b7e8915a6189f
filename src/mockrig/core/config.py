"""
Configuration
==============
Two sources feed the server:

  • Environment (optionally from a .env file in the working directory):
    MOCKRIG_CONFIG, HOST, PORT, ADMIN_TOKEN, ADMIN_PREFIX, SHUTDOWN_TIMEOUT,
    LOG_LEVEL.  Environment wins over the config file.

  • The endpoint config file (JSON):
        {
          "serverHost": "0.0.0.0",
          "serverPort": 3000,
          "useProxy": false,
          "endpoints": [
            {"path": "/users/:id", "method": "GET", "response": "user.json",
             "delay": {"min": 100, "max": 300}, "rate": 5, "cors": true,
             "headers": {"X-Env": "mock"}, "cookies": {"session": "abc"},
             "status": 200},
            {"path": "/orders", "method": "POST", "proxy": "http://localhost:4000"}
          ]
        }
    Response assets live in responses/ and handler modules in handlers/, both
    next to the config file.
"""

import json
import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from mockrig.core.errors import ConfigError
from mockrig.core.models import (
    CustomHandler, EndpointDescriptor, FixedDelay, HttpMethod, NoContent,
    Proxy, RangeDelay, StaticJson, StaticText,
)
from mockrig.utils.handler_loader import exported_handlers

logger = logging.getLogger("mockrig")

load_dotenv()

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_ADMIN_PREFIX = "/admin"
DEFAULT_SHUTDOWN_TIMEOUT = 5.0

RESPONSES_DIR = "responses"
HANDLERS_DIR = "handlers"

_EXPRESS_PARAM = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


@dataclass
class ServerConfig:
    base_dir: Path
    endpoints: List[EndpointDescriptor] = field(default_factory=list)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    use_proxy: bool = False
    admin_token: str = ""
    admin_prefix: str = DEFAULT_ADMIN_PREFIX
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Read the endpoint config file and merge in the environment."""
    environ = os.environ if environ is None else environ
    config_path = Path(path or environ.get("MOCKRIG_CONFIG", DEFAULT_CONFIG_PATH))
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e

    return parse_config(raw, config_path.resolve().parent, environ)


def parse_config(raw: Dict[str, Any], base_dir: Path, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    environ = {} if environ is None else environ
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a JSON object")

    admin_prefix = "/" + environ.get("ADMIN_PREFIX", DEFAULT_ADMIN_PREFIX).strip("/")

    try:
        port = int(environ.get("PORT") or raw.get("serverPort") or DEFAULT_PORT)
        shutdown_timeout = float(environ.get("SHUTDOWN_TIMEOUT") or DEFAULT_SHUTDOWN_TIMEOUT)
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e

    entries = raw.get("endpoints", [])
    if not isinstance(entries, list):
        raise ConfigError("'endpoints' must be a list")

    return ServerConfig(
        base_dir=Path(base_dir),
        endpoints=parse_endpoints(entries, Path(base_dir), admin_prefix),
        host=environ.get("HOST") or raw.get("serverHost") or DEFAULT_HOST,
        port=port,
        use_proxy=bool(raw.get("useProxy", False)),
        admin_token=environ.get("ADMIN_TOKEN", ""),
        admin_prefix=admin_prefix,
        shutdown_timeout=shutdown_timeout,
    )


def parse_endpoints(entries: List[Any], base_dir: Path, admin_prefix: str = DEFAULT_ADMIN_PREFIX) -> List[EndpointDescriptor]:
    descriptors: List[EndpointDescriptor] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"Endpoint entry must be an object, got: {entry!r}")
        if not entry.get("path"):
            logger.warning(f"⚠️ No path detected, skipping endpoint: {entry}")
            continue
        descriptors.extend(parse_endpoint(entry, base_dir, admin_prefix))
    return descriptors


def parse_endpoint(entry: Dict[str, Any], base_dir: Path, admin_prefix: str = DEFAULT_ADMIN_PREFIX) -> List[EndpointDescriptor]:
    """
    Turn one config entry into descriptors.

    Usually that is exactly one descriptor. A custom handler module yields one
    descriptor per exported method function, and the entry's own method is
    ignored.
    """
    path = normalize_route(entry["path"])
    if path == admin_prefix or path.startswith(admin_prefix + "/"):
        raise ConfigError(f"Endpoint {path} collides with the admin prefix {admin_prefix}")

    common = dict(
        path=path,
        delay=parse_delay(entry.get("delay")),
        rate=_parse_rate(entry.get("rate"), path),
        headers=_pairs(entry.get("headers"), "headers", path),
        cookies=_pairs(entry.get("cookies"), "cookies", path),
        cors=bool(entry.get("cors", False)),
        status=_parse_status(entry.get("status", 200), path),
    )

    response = entry.get("response")
    if response is not None and not isinstance(response, str):
        raise ConfigError(f"{path}: 'response' must be a file name")

    if response and response.endswith(".py"):
        module = base_dir / HANDLERS_DIR / response
        handlers = exported_handlers(module)
        if not handlers:
            raise ConfigError(f"{path}: handler module {response} exports no get/post/put/patch/delete")
        return [
            EndpointDescriptor(method=HttpMethod(name.upper()), response=CustomHandler(module, name), **common)
            for name in handlers
        ]

    method = _parse_method(entry.get("method"), path)
    proxy = entry.get("proxy")
    if proxy:
        source = Proxy(_normalize_target(proxy, path))
    elif not response:
        source = NoContent()
    elif response.endswith(".json"):
        source = StaticJson(base_dir / RESPONSES_DIR / response)
    else:
        source = StaticText(base_dir / RESPONSES_DIR / response)

    return [EndpointDescriptor(method=method, response=source, **common)]


def normalize_route(path: str) -> str:
    """Accept Express-style ':param' segments and FastAPI '{param}' alike."""
    if not isinstance(path, str):
        raise ConfigError(f"Endpoint path must be a string, got: {path!r}")
    path = _EXPRESS_PARAM.sub(r"{\1}", path.strip())
    if not path.startswith("/"):
        path = "/" + path
    return path


def parse_delay(delay: Any):
    if delay is None or delay is False:
        return None
    if isinstance(delay, dict) and "min" in delay and "max" in delay:
        low, high = delay["min"], delay["max"]
        if not all(_is_number(v) for v in (low, high)) or low < 0 or high < low:
            raise ConfigError(f"Invalid delay range: {delay}")
        return RangeDelay(float(low), float(high))
    if _is_number(delay):
        if delay < 0:
            raise ConfigError(f"Delay must not be negative: {delay}")
        return FixedDelay(float(delay)) if delay > 0 else None
    raise ConfigError(
        f"Invalid delay specified. Expected either a number or {{min: number, max: number}}. Received: {delay!r}"
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_method(method: Any, path: str) -> HttpMethod:
    if method is None:
        return HttpMethod.GET
    try:
        return HttpMethod(str(method).upper())
    except ValueError:
        raise ConfigError(f"{path}: unsupported method {method!r}")


def _parse_rate(rate: Any, path: str) -> Optional[int]:
    if not rate:
        return None
    if not _is_number(rate) or rate < 1:
        raise ConfigError(f"{path}: 'rate' must be a positive number of requests per second")
    return int(rate)


def _parse_status(status: Any, path: str) -> int:
    if not isinstance(status, int) or isinstance(status, bool) or not 100 <= status <= 599:
        raise ConfigError(f"{path}: invalid status code {status!r}")
    return status


def _pairs(mapping: Any, name: str, path: str) -> Tuple[Tuple[str, str], ...]:
    if not mapping:
        return ()
    if not isinstance(mapping, dict):
        raise ConfigError(f"{path}: '{name}' must be an object")
    return tuple((str(k), str(v)) for k, v in mapping.items())


def _normalize_target(target: Any, path: str) -> str:
    if not isinstance(target, str):
        raise ConfigError(f"{path}: 'proxy' must be a URL string")
    target = target.strip().rstrip("/")
    if not target.startswith(("http://", "https://")):
        target = "http://" + target
    return target
