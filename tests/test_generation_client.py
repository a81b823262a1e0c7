import asyncio
import json

import httpx
import pytest

from app.core.exceptions import SubmissionTransportFailure
from app.schemas.generation import SubmissionPayload, VideoFormat
from app.services.generation_client import GenerationClient


def _client(settings, handler):
    return GenerationClient(settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _payload():
    return SubmissionPayload(
        job_id="job-1",
        prompt="a sneaker on a beach",
        video_category="sora2",
        aspect_ratio=VideoFormat.PORTRAIT,
        start_image="aGVsbG8=",
        duration=10,
        callback_url="https://example.com/cb",
    )


def test_submit_posts_camel_case_json(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text="Accepted")

    asyncio.run(_client(settings, handler).submit(_payload()))
    assert seen["url"] == settings.generation_submit_url
    assert seen["body"] == {
        "jobId": "job-1",
        "prompt": "a sneaker on a beach",
        "videoCategory": "sora2",
        "aspectRatio": "portrait",
        "startImage": "aGVsbG8=",
        "duration": 10,
        "callbackUrl": "https://example.com/cb",
    }


@pytest.mark.parametrize("status_code", [400, 500, 503])
def test_submit_http_error_is_transport_failure(settings, status_code):
    client = _client(settings, lambda request: httpx.Response(status_code))
    with pytest.raises(SubmissionTransportFailure):
        asyncio.run(client.submit(_payload()))


def test_submit_connection_error_is_transport_failure(settings):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(SubmissionTransportFailure):
        asyncio.run(_client(settings, handler).submit(_payload()))


def test_check_status_sends_job_id(settings):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"urlVideo": "https://cdn.example.com/v.mp4"})

    status = asyncio.run(_client(settings, handler).check_status("job-7"))
    assert seen == {"url": settings.generation_status_url, "body": {"jobId": "job-7"}}
    assert status.video_url == "https://cdn.example.com/v.mp4"


@pytest.mark.parametrize(
    "body,video_url,error",
    [
        ({"URL VIDEO": "https://cdn.example.com/a.mp4"}, "https://cdn.example.com/a.mp4", None),
        ({"ERROR": "Rejected"}, None, "Rejected"),
        ([{"errorMessage": "Rejected"}], None, "Rejected"),
        ({"status": "processing"}, None, None),
    ],
)
def test_check_status_parses_body_shapes(settings, body, video_url, error):
    status = asyncio.run(_client(settings, lambda r: httpx.Response(200, json=body)).check_status("j"))
    assert status.video_url == video_url
    assert status.error_message == error


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="Accepted"),
        httpx.Response(502),
        httpx.Response(200, json=[]),
        httpx.Response(200, json="done"),
    ],
)
def test_unusable_status_returns_none(settings, response):
    assert asyncio.run(_client(settings, lambda r: response).check_status("j")) is None


def test_status_connection_error_returns_none(settings):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    assert asyncio.run(_client(settings, handler).check_status("j")) is None
