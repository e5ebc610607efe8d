import base64
import json

import httpx
import pytest

from linkme.features.outreach.services.executor import ActionExecutorError, HttpActionExecutor


def _executor(handler) -> HttpActionExecutor:
    return HttpActionExecutor(
        "http://executor.test/", api_key="k-123", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_connect_round_trip_releases_session():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        assert request.headers["Authorization"] == "Bearer k-123"
        if request.method == "POST" and request.url.path == "/sessions":
            return httpx.Response(200, json={"session_id": "s1"})
        if request.url.path == "/sessions/s1/connect":
            body = json.loads(request.content)
            assert body == {"record_id": "abc", "display_name": "Ada", "message": "Hi Ada"}
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "message": "Invitation sent",
                    "logs": ["opened profile"],
                    "screenshots": [
                        {"label": "after", "image_base64": base64.b64encode(b"png").decode()},
                        {"label": "broken", "image_base64": "***"},
                    ],
                },
            )
        return httpx.Response(204)

    async with _executor(handler).session() as ctx:
        result = await ctx.connect("abc", "Ada", "Hi Ada")

    assert result.success is True
    assert result.logs == ["opened profile"]
    assert [(s.label, s.data) for s in result.screenshots] == [("after", b"png")]
    assert seen[-1] == ("DELETE", "/sessions/s1")


@pytest.mark.asyncio
async def test_remote_error_raises_and_still_releases():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path == "/sessions":
            return httpx.Response(200, json={"session_id": "s1"})
        if request.url.path == "/sessions/s1/message":
            return httpx.Response(502)
        return httpx.Response(204)

    with pytest.raises(ActionExecutorError) as exc_info:
        async with _executor(handler).session() as ctx:
            await ctx.send_message("abc", "Ada", "hello")

    assert exc_info.value.status_code == 502
    assert exc_info.value.recoverable is True
    assert ("DELETE", "/sessions/s1") in seen


@pytest.mark.asyncio
async def test_session_open_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(ActionExecutorError):
        async with _executor(handler).session():
            pass
