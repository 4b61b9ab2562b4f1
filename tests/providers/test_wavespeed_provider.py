import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests

from reelchain.core.errors import ProviderPermanentError, ProviderTransientError, TaskNotFoundError
from reelchain.providers.base import FAILED, PROCESSING, SUCCEEDED, WAITING
from reelchain.providers.selection import ProviderPolicy
from reelchain.providers.wavespeed import WaveSpeedProvider, download_bytes, parse_status


def _mock_resp(data, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = {"data": data}
    resp.text = "ok" if status == 200 else "error"
    return resp


def _provider():
    return WaveSpeedProvider("key", model_id="vendor/t2v", i2v_model_id="vendor/i2v", base_url="https://api.test/v3")


def test_submit_text_to_video():
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.return_value = _mock_resp({"id": "task-1"})
        task_id = asyncio.run(provider.submit("A red kite.", {"duration": 5}))

    assert task_id == "task-1"
    method, url = request.call_args[0]
    assert (method, url) == ("POST", "https://api.test/v3/vendor/t2v")
    assert request.call_args.kwargs["json"] == {"duration": 5, "prompt": "A red kite."}
    assert request.call_args.kwargs["timeout"] == 30.0


def test_submit_with_seed_uploads_frame_and_uses_i2v_model():
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.side_effect = [
            _mock_resp({"download_url": "https://cdn.test/seed.png"}),
            _mock_resp({"id": "task-2"}),
        ]
        task_id = asyncio.run(provider.submit("It flies on.", {}, seed_image=b"png-bytes"))

    assert task_id == "task-2"
    upload_call, run_call = request.call_args_list
    assert upload_call[0][1].endswith("/media/upload/binary")
    assert run_call[0][1] == "https://api.test/v3/vendor/i2v"
    assert run_call.kwargs["json"]["image"] == "https://cdn.test/seed.png"


@pytest.mark.parametrize(
    "data,state",
    [
        ({"status": "created"}, WAITING),
        ({"status": "queued"}, WAITING),
        ({"status": "processing"}, PROCESSING),
        ({"status": "completed", "outputs": ["https://cdn.test/out.mp4"]}, SUCCEEDED),
        ({"status": "completed", "outputs": []}, FAILED),
        ({"status": "failed", "error": "nsfw"}, FAILED),
    ],
)
def test_status_mapping(data, state):
    assert parse_status(data).state == state


def test_poll_returns_asset_url():
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.return_value = _mock_resp({"status": "completed", "outputs": ["https://cdn.test/out.mp4"]})
        status = asyncio.run(provider.poll("task-1"))
    assert status.asset_url == "https://cdn.test/out.mp4"
    assert request.call_args[0][1] == "https://api.test/v3/predictions/task-1/result"


@pytest.mark.parametrize(
    "code,error",
    [(401, ProviderPermanentError), (422, ProviderPermanentError), (429, ProviderTransientError), (502, ProviderTransientError)],
)
def test_submit_http_errors_are_classified(code, error):
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.return_value = _mock_resp({}, status=code)
        with pytest.raises(error) as exc:
            asyncio.run(provider.submit("x", {}))
    assert exc.value.status_code == code


def test_poll_404_is_task_not_found():
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.return_value = _mock_resp({}, status=404)
        with pytest.raises(TaskNotFoundError):
            asyncio.run(provider.poll("ghost"))


def test_connection_errors_are_transient():
    provider = _provider()
    with patch("reelchain.providers.wavespeed.requests.request") as request:
        request.side_effect = requests.ConnectionError("reset")
        with pytest.raises(ProviderTransientError):
            asyncio.run(provider.poll("task-1"))


def test_missing_api_key_is_permanent():
    with pytest.raises(ProviderPermanentError):
        WaveSpeedProvider("")


def test_download_bytes_streams_body():
    resp = _mock_resp({})
    resp.__enter__.return_value = resp
    resp.iter_content.return_value = [b"abc", b"", b"def"]
    with patch("reelchain.providers.wavespeed.requests.get") as get:
        get.return_value = resp
        assert download_bytes("https://cdn.test/out.mp4") == b"abcdef"
        assert get.call_args.kwargs["stream"] is True


def test_policy_switches_after_threshold():
    primary, fallback = _provider(), WaveSpeedProvider("key2", name="backup")
    policy = ProviderPolicy(primary, fallback, fallback_after=2)
    assert policy.select(0) is primary
    assert policy.select(1) is primary
    assert policy.select(2) is fallback
    assert policy.is_fallback(fallback)
    assert ProviderPolicy(primary).select(5) is primary
