import time
import uuid

from fastapi.testclient import TestClient

from mockrig.core.state import SimulationState

ECHO_HANDLER = """
def get(ctx):
    return {"params": dict(ctx.path_params), "query": dict(ctx.query)}

async def post(ctx):
    body = ctx.body
    if isinstance(body, bytes):
        body = body.decode()
    return {"received": body}
"""


def test_stage_order_for_a_fully_loaded_route(build_app, write_response):
    write_response("user.json", {"name": "ada"})
    app = build_app([
        {"path": "/users/:id", "response": "user.json", "cors": True, "rate": 10, "delay": 5},
    ])
    pipeline = app.state.registry.get("/users/{id}", "GET")
    assert pipeline.stage_names == ["metrics", "cors", "rate_limit", "delay", "body", "metadata", "fail", "static_json"]


def test_optional_stages_are_left_out(build_app):
    app = build_app([{"path": "/ping"}, {"path": "/up", "proxy": "http://localhost:4000"}])
    assert app.state.registry.get("/ping", "GET").stage_names == ["metrics", "body", "metadata", "fail", "no_content"]
    assert app.state.registry.get("/up", "GET").stage_names == ["metrics", "metadata", "fail", "proxy"]


def test_static_json_is_templated_per_request(build_app, write_response):
    write_response("user.json", '{"id": "${uuidRandom}", "name": "ada", "at": "${timestampUtc}"}')
    client = TestClient(build_app([{"path": "/users/:id", "response": "user.json"}]))

    first = client.get("/users/1")
    second = client.get("/users/2")
    assert first.status_code == 200
    assert first.headers["content-type"] == "application/json"
    assert first.json()["name"] == "ada"
    assert uuid.UUID(first.json()["id"])
    assert first.json()["id"] != second.json()["id"]
    assert first.json()["at"].endswith("Z")


def test_static_text_and_html(build_app, write_response):
    write_response("robots.txt", "User-agent: *\n")
    write_response("status.html", "<h1>ok</h1>")
    client = TestClient(build_app([
        {"path": "/robots.txt", "response": "robots.txt"},
        {"path": "/status", "response": "status.html"},
    ]))

    text = client.get("/robots.txt")
    assert text.text == "User-agent: *\n"
    assert text.headers["content-type"].startswith("text/plain")

    html = client.get("/status")
    assert html.text == "<h1>ok</h1>"
    assert html.headers["content-type"].startswith("text/html")


def test_no_content_uses_configured_status(build_app):
    client = TestClient(build_app([{"path": "/jobs", "method": "DELETE", "status": 204}, {"path": "/ping"}]))
    deleted = client.delete("/jobs")
    assert deleted.status_code == 204
    assert deleted.content == b""
    assert client.get("/ping").status_code == 200


def test_configured_headers_and_cookies(build_app, write_response):
    write_response("created.json", {"ok": True})
    client = TestClient(build_app([{
        "path": "/users",
        "method": "POST",
        "response": "created.json",
        "status": 201,
        "headers": {"X-Mock-Source": "mockrig", "Content-Type": "application/vnd.api+json"},
        "cookies": {"session": "abc"},
    }]))

    response = client.post("/users", json={"name": "ada"})
    assert response.status_code == 201
    assert response.headers["x-mock-source"] == "mockrig"
    assert response.headers["content-type"] == "application/vnd.api+json"
    assert response.cookies["session"] == "abc"
    assert response.json() == {"ok": True}


def test_unknown_method_on_known_path(build_app):
    client = TestClient(build_app([{"path": "/ping"}]))
    assert client.post("/ping").status_code == 405
    assert client.get("/nowhere").status_code == 404


# ── Fail simulation ──

def test_certain_failure_keeps_metadata(build_app, write_response):
    write_response("user.json", {"name": "ada"})
    state = SimulationState(fail_probability=1.0)
    client = TestClient(build_app(
        [{"path": "/users", "response": "user.json", "headers": {"X-Env": "mock"}, "cookies": {"session": "abc"}}],
        state=state,
    ))

    response = client.get("/users")
    assert response.status_code == 503
    assert response.content == b""
    assert response.headers["x-env"] == "mock"
    assert response.cookies["session"] == "abc"


def test_failure_dial_is_read_live(build_app):
    state = SimulationState()
    client = TestClient(build_app([{"path": "/ping"}], state=state))
    assert client.get("/ping").status_code == 200

    state.set(fail_probability=1.0)
    assert client.get("/ping").status_code == 503

    state.set(fail_probability=0.0)
    assert all(client.get("/ping").status_code == 200 for _ in range(20))


# ── Delay ──

def test_fixed_delay_is_applied(build_app):
    client = TestClient(build_app([{"path": "/slow", "delay": 200}]))
    start = time.perf_counter()
    assert client.get("/slow").status_code == 200
    assert time.perf_counter() - start >= 0.19


def test_delay_factor_zero_disables_delay(build_app):
    state = SimulationState(delay_factor=0.0)
    client = TestClient(build_app([{"path": "/slow", "delay": 2000}], state=state))
    start = time.perf_counter()
    assert client.get("/slow").status_code == 200
    assert time.perf_counter() - start < 1.5


# ── Body parsing and custom handlers ──

def test_custom_handler_get_sees_params_and_query(build_app, write_handler):
    write_handler("echo.py", ECHO_HANDLER)
    client = TestClient(build_app([{"path": "/echo/:name", "response": "echo.py"}]))
    response = client.get("/echo/ada", params={"page": "2"})
    assert response.status_code == 200
    assert response.json() == {"params": {"name": "ada"}, "query": {"page": "2"}}


def test_custom_handler_post_json_body(build_app, write_handler):
    write_handler("echo.py", ECHO_HANDLER)
    client = TestClient(build_app([{"path": "/echo/:name", "response": "echo.py"}]))
    response = client.post("/echo/ada", json={"a": [1, 2]})
    assert response.json() == {"received": {"a": [1, 2]}}


def test_custom_handler_post_form_body(build_app, write_handler):
    write_handler("echo.py", ECHO_HANDLER)
    client = TestClient(build_app([{"path": "/echo/:name", "response": "echo.py"}]))
    response = client.post("/echo/ada", data={"name": "ada", "lang": "en"})
    assert response.json() == {"received": {"name": "ada", "lang": "en"}}


def test_custom_handler_post_raw_body(build_app, write_handler):
    write_handler("echo.py", ECHO_HANDLER)
    client = TestClient(build_app([{"path": "/echo/:name", "response": "echo.py"}]))
    response = client.post("/echo/ada", content=b"plain words", headers={"Content-Type": "text/plain"})
    assert response.json() == {"received": "plain words"}


def test_malformed_json_body_is_rejected(build_app, write_handler):
    write_handler("echo.py", ECHO_HANDLER)
    client = TestClient(build_app([{"path": "/echo/:name", "response": "echo.py"}]))
    response = client.post("/echo/ada", content=b"{nope", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_handler_return_types(build_app, write_handler):
    write_handler("kinds.py", (
        "from fastapi import Response\n"
        "def get(ctx):\n"
        "    return 'hello'\n"
        "def put(ctx):\n"
        "    return None\n"
        "def delete(ctx):\n"
        "    return Response('gone', status_code=410)\n"
    ))
    client = TestClient(build_app([{"path": "/kinds", "response": "kinds.py", "status": 202}]))

    text = client.get("/kinds")
    assert text.status_code == 202
    assert text.text == "hello"
    assert client.put("/kinds").status_code == 202
    assert client.delete("/kinds").status_code == 410


def test_handler_crash_keeps_metadata(build_app, write_handler):
    write_handler("crash.py", (
        "def get(ctx):\n"
        "    raise RuntimeError('handler blew up')\n"
        "def post(ctx):\n"
        "    return {'when': object()}\n"
    ))
    client = TestClient(build_app([
        {"path": "/crash", "response": "crash.py", "headers": {"X-Env": "mock"}, "cookies": {"session": "abc"}},
    ]))

    for response in (client.get("/crash"), client.post("/crash")):
        assert response.status_code == 500
        assert response.content == b""
        assert response.headers["x-env"] == "mock"
        assert response.cookies["session"] == "abc"

    # the route keeps serving after a crash
    assert client.get("/crash").status_code == 500


# ── CORS ──

def test_cors_header_on_responses(build_app):
    client = TestClient(build_app([{"path": "/open", "cors": True}, {"path": "/closed"}]))
    assert client.get("/open").headers["access-control-allow-origin"] == "*"
    assert "access-control-allow-origin" not in client.get("/closed").headers


def test_cors_preflight(build_app):
    client = TestClient(build_app([
        {"path": "/open", "cors": True},
        {"path": "/open", "method": "POST", "cors": True},
    ]))
    response = client.options(
        "/open",
        headers={"Origin": "http://example.com", "Access-Control-Request-Method": "POST",
                 "Access-Control-Request-Headers": "content-type"},
    )
    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET,POST"
    assert response.headers["access-control-allow-headers"] == "content-type"


def test_cors_on_simulated_failure(build_app):
    client = TestClient(build_app([{"path": "/open", "cors": True}], state=SimulationState(fail_probability=1.0)))
    response = client.get("/open")
    assert response.status_code == 503
    assert response.headers["access-control-allow-origin"] == "*"


# ── Metrics ──

def test_requests_show_up_in_metrics(build_app):
    app = build_app([{"path": "/users/:id"}, {"path": "/users", "method": "POST"}])
    client = TestClient(app)
    for i in range(3):
        client.get(f"/users/{i}")
    client.post("/users")

    assert app.state.tracker.count("/users/{id}", "GET") == 3
    assert app.state.tracker.count("/users", "POST") == 1


def test_failed_requests_are_still_counted(build_app):
    app = build_app([{"path": "/ping"}], state=SimulationState(fail_probability=1.0))
    client = TestClient(app)
    client.get("/ping")
    client.get("/ping")
    assert app.state.tracker.count("/ping", "GET") == 2


def test_counts_decay_while_the_server_runs(build_app):
    app = build_app([{"path": "/ping"}])
    with TestClient(app) as client:
        for _ in range(4):
            client.get("/ping")
        assert app.state.tracker.count("/ping", "GET") == 4

        # one full window plus slack for the ticker
        time.sleep(1.3)
        assert app.state.tracker.count("/ping", "GET") == 0
