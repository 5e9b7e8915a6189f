import json

import pytest

from mockrig.core.config import parse_config
from mockrig.mock_server import create_app


@pytest.fixture
def workspace(tmp_path):
    """A config directory with empty responses/ and handlers/ folders."""
    (tmp_path / "responses").mkdir()
    (tmp_path / "handlers").mkdir()
    return tmp_path


@pytest.fixture
def write_response(workspace):
    def _write(name, content):
        if not isinstance(content, str):
            content = json.dumps(content)
        (workspace / "responses" / name).write_text(content, encoding="utf-8")
        return name

    return _write


@pytest.fixture
def write_handler(workspace):
    def _write(name, source):
        (workspace / "handlers" / name).write_text(source, encoding="utf-8")
        return name

    return _write


@pytest.fixture
def build_app(workspace):
    def _build(endpoints, environ=None, **kwargs):
        config = parse_config({"endpoints": endpoints}, workspace, environ or {})
        return create_app(config, **kwargs)

    return _build
