"""
Endpoint Models
================
Immutable records describing what a declared route does.

Notes:
  - ResponseSource and DelaySpec are closed variants. The config loader picks the
    variant once from the shape of the config entry; nothing downstream inspects
    file extensions or raw dicts again.
  - Header and cookie mappings are stored as tuples of pairs so descriptors stay
    hashable and cannot be mutated after load.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# ── Response sources ──

@dataclass(frozen=True)
class NoContent:
    pass


@dataclass(frozen=True)
class StaticJson:
    file: Path


@dataclass(frozen=True)
class StaticText:
    file: Path

    @property
    def media_type(self) -> str:
        return "text/html" if self.file.suffix.lower() == ".html" else "text/plain"


@dataclass(frozen=True)
class Proxy:
    target: str


@dataclass(frozen=True)
class CustomHandler:
    module: Path
    function: str


ResponseSource = Union[NoContent, StaticJson, StaticText, Proxy, CustomHandler]


# ── Delays ──

@dataclass(frozen=True)
class FixedDelay:
    ms: float


@dataclass(frozen=True)
class RangeDelay:
    min_ms: float
    max_ms: float


DelaySpec = Union[FixedDelay, RangeDelay]


@dataclass(frozen=True)
class EndpointDescriptor:
    path: str
    method: HttpMethod = HttpMethod.GET
    response: ResponseSource = field(default_factory=NoContent)
    delay: Optional[DelaySpec] = None
    rate: Optional[int] = None
    headers: Tuple[Tuple[str, str], ...] = ()
    cookies: Tuple[Tuple[str, str], ...] = ()
    cors: bool = False
    status: int = 200

    @property
    def is_proxy(self) -> bool:
        return isinstance(self.response, Proxy)

    @property
    def key(self) -> Tuple[str, str]:
        return self.path, self.method.value

    def __str__(self) -> str:
        return f"{self.method.value} {self.path}"
