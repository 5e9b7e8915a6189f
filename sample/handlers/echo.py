"""Echo back whatever was sent, plus the parsed query string."""


def get(ctx):
    return {"method": "GET", "query": dict(ctx.query)}


async def post(ctx):
    body = ctx.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return {"method": "POST", "received": body}
