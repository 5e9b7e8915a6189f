"""
Placeholder substitution for static JSON responses.

Recognized placeholders:
  ${uuidRandom}    → a fresh UUID4 for every occurrence
  ${timestampUtc}  → current UTC time, e.g. 2024-05-01T12:30:00.123Z

Substitution is textual and happens before the template is parsed as JSON, so a
placeholder must sit inside a JSON string literal.
"""

import re
import uuid
import datetime
from typing import Callable, Dict, Optional

PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


def utc_timestamp(now: Optional[datetime.datetime] = None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


PLACEHOLDERS: Dict[str, Callable[[], str]] = {
    "uuidRandom": lambda: str(uuid.uuid4()),
    "timestampUtc": utc_timestamp,
}


def render_template(text: str) -> str:
    def replace(match: re.Match) -> str:
        factory = PLACEHOLDERS.get(match.group(1))
        # unknown placeholders are left untouched
        return factory() if factory else match.group(0)

    return PLACEHOLDER.sub(replace, text)
