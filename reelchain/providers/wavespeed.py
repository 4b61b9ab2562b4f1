import asyncio
from typing import Any, Dict, Optional

import requests

from reelchain.core.errors import (
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    TaskNotFoundError,
)
from reelchain.providers.base import FAILED, PROCESSING, SUCCEEDED, WAITING, PollStatus
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

DEFAULT_BASE_URL = "https://api.wavespeed.ai/api/v3"

_STATUS_MAP = {
    "created": WAITING,
    "queued": WAITING,
    "pending": WAITING,
    "processing": PROCESSING,
    "running": PROCESSING,
    "completed": SUCCEEDED,
    "succeeded": SUCCEEDED,
    "failed": FAILED,
    "error": FAILED,
}

_PERMANENT_CODES = {400, 401, 403, 422}


def _raise_for_status(resp: requests.Response, action: str, provider: str, task_id: Optional[str] = None) -> None:
    code = resp.status_code
    if code == 200:
        return
    detail = f"{action} failed: {code} {resp.text}"
    if code == 404 and task_id is not None:
        raise TaskNotFoundError(task_id, provider=provider)
    if code in _PERMANENT_CODES:
        raise ProviderPermanentError(detail, status_code=code, provider=provider)
    if code == 429 or code >= 500:
        raise ProviderTransientError(detail, status_code=code, provider=provider)
    raise ProviderPermanentError(detail, status_code=code, provider=provider)


class WaveSpeedClient:
    """Thin synchronous client over the WaveSpeed prediction API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float = 30.0,
        provider_name: str = "wavespeed",
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.provider_name = provider_name

    def _headers(self, json_body: bool = False) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return requests.request(method, url, timeout=self.request_timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderTransientError(f"{method} {url}: {e}", provider=self.provider_name) from e
        except requests.RequestException as e:
            raise ProviderError(f"{method} {url}: {e}", provider=self.provider_name) from e

    def upload_media(self, data: bytes, filename: str = "seed.png") -> str:
        url = f"{self.base_url}/media/upload/binary"
        resp = self._request("POST", url, headers=self._headers(), files={"file": (filename, data)})
        _raise_for_status(resp, "Upload", self.provider_name)
        payload = resp.json().get("data", {})
        media_url = payload.get("download_url") or payload.get("url")
        if not media_url:
            raise ProviderPermanentError("Upload response carried no url", provider=self.provider_name)
        return media_url

    def run_model(self, model_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{model_id}"
        resp = self._request("POST", url, headers=self._headers(json_body=True), json=payload)
        _raise_for_status(resp, "Submit", self.provider_name)
        data = resp.json().get("data", {})
        if not data.get("id"):
            raise ProviderTransientError("Submit response carried no task id", provider=self.provider_name)
        return data

    def get_result(self, task_id: str) -> Dict[str, Any]:
        url = f"{self.base_url}/predictions/{task_id}/result"
        resp = self._request("GET", url, headers=self._headers())
        _raise_for_status(resp, "Poll", self.provider_name, task_id=task_id)
        return resp.json().get("data", {})


def parse_status(data: Dict[str, Any]) -> PollStatus:
    raw = str(data.get("status") or "").lower()
    state = _STATUS_MAP.get(raw, WAITING)
    if state == SUCCEEDED:
        outputs = data.get("outputs") or []
        if not outputs:
            return PollStatus(FAILED, reason="completed without outputs")
        return PollStatus(SUCCEEDED, asset_url=outputs[0])
    if state == FAILED:
        return PollStatus(FAILED, reason=data.get("error") or "provider reported failure")
    return PollStatus(state)


class WaveSpeedProvider:
    """VideoProvider backed by a WaveSpeed text/image-to-video model."""

    def __init__(
        self,
        api_key: str,
        model_id: str = "bytedance/seedance-v1-pro-t2v-480p",
        i2v_model_id: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        name: str = "wavespeed",
        request_timeout: float = 30.0,
        client: Optional[WaveSpeedClient] = None,
    ):
        if not api_key and client is None:
            raise ProviderPermanentError(f"Missing API key for provider {name}", provider=name)
        self.name = name
        self.model_id = model_id
        self.i2v_model_id = i2v_model_id or model_id
        self.client = client or WaveSpeedClient(api_key, base_url, request_timeout, provider_name=name)

    @property
    def identity(self) -> str:
        return f"{self.name}:{self.model_id}"

    def _submit_sync(self, prompt: str, params: Dict[str, Any], seed_image: Optional[bytes]) -> str:
        payload = dict(params)
        payload["prompt"] = prompt
        model_id = self.model_id
        if seed_image is not None:
            payload["image"] = self.client.upload_media(seed_image)
            model_id = self.i2v_model_id
        data = self.client.run_model(model_id, payload)
        logger.info(f"Submitted task {data['id']} to {self.name}/{model_id}")
        return data["id"]

    async def submit(self, prompt: str, params: Dict[str, Any], seed_image: Optional[bytes] = None) -> str:
        return await asyncio.to_thread(self._submit_sync, prompt, params, seed_image)

    async def poll(self, task_id: str) -> PollStatus:
        data = await asyncio.to_thread(self.client.get_result, task_id)
        return parse_status(data)


def download_bytes(url: str, timeout: float = 60.0, chunk_size: int = 1 << 16) -> bytes:
    """Fetch a generated asset; network errors are transient."""
    try:
        with requests.get(url, stream=True, timeout=timeout) as resp:
            if resp.status_code != 200:
                raise ProviderTransientError(f"Download failed: {resp.status_code}", status_code=resp.status_code)
            return b"".join(chunk for chunk in resp.iter_content(chunk_size) if chunk)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise ProviderTransientError(f"Download failed: {e}") from e
