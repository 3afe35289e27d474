"""HTTP clients for the external sound generation providers.

Every client implements the same capability, ``generate(prompt) -> bytes``,
and is tried by the orchestrator in a fixed priority order:

  1. ElevenLabs    POST /v1/sound-generation             (binary audio)
  2. Replicate     POST /v1/predictions, poll, download  (MusicGen)
  3. Hugging Face  POST inference API                    (binary audio)

Providers only ever see the text prompt; music parameters are reserved for
the procedural fallback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from moodsound.config import EngineSettings

log = logging.getLogger(__name__)

# Anything smaller is an error page or an empty clip, not audio
MIN_AUDIO_BYTES = 1000
PROVIDER_CLIP_SECONDS = 8.0

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/sound-generation"
REPLICATE_URL = "https://api.replicate.com/v1/predictions"
REPLICATE_MUSICGEN_VERSION = "7a76a8258b23fae65c5a22debb8841d1d7e816b75c2f24218cd2bd8573787906"
HUGGINGFACE_URL = "https://api-inference.huggingface.co/models/facebook/musicgen-small"


class ProviderError(Exception):
    """A provider call failed: non-2xx status, network error or bad payload."""

    def __init__(
        self, provider: str, status: int | None, body: str = "", *, malformed: bool = False
    ):
        self.provider = provider
        self.status = status
        self.body = body
        self.malformed = malformed
        super().__init__(f"{provider} failed (status={status}): {body[:200]}")

    @property
    def transient(self) -> bool:
        """Whether retrying the same provider can help."""
        if self.malformed or self.status is None:
            return True
        return self.status in (408, 429) or self.status >= 500


@runtime_checkable
class ProviderClient(Protocol):
    """Interface for external generation backends.

    ``generate`` returns encoded audio bytes or raises ProviderError.
    """

    name: str
    audio_format: str
    clip_seconds: float

    async def generate(self, prompt: str) -> bytes: ...


class HttpProvider:
    """Shared httpx plumbing for the concrete providers."""

    name = "http"
    audio_format = "mp3"
    clip_seconds = PROVIDER_CLIP_SECONDS

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _error(self, status: int | None, body: str, malformed: bool = False) -> ProviderError:
        return ProviderError(self.name, status, body, malformed=malformed)

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            resp = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise self._error(None, f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise self._error(resp.status_code, resp.text)
        return resp

    async def _download(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """Fetch a provider-hosted file. No credentials go to the file host."""
        try:
            resp = await client.get(url)
        except httpx.HTTPError as e:
            raise self._error(None, f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise self._error(resp.status_code, resp.text)
        return resp

    def _json(self, resp: httpx.Response) -> dict:
        try:
            body = resp.json()
        except ValueError as e:
            raise self._error(resp.status_code, f"Malformed JSON: {resp.text[:200]}", True) from e
        if not isinstance(body, dict):
            raise self._error(resp.status_code, f"Unexpected payload: {body!r}"[:200], True)
        return body

    def _audio(self, resp: httpx.Response) -> bytes:
        content_type = resp.headers.get("content-type", "")
        if content_type.startswith(("application/json", "text/")):
            raise self._error(resp.status_code, f"Expected audio, got {content_type}: {resp.text}", True)
        data = resp.content
        if len(data) < MIN_AUDIO_BYTES:
            raise self._error(resp.status_code, f"Suspiciously small audio payload ({len(data)} bytes)", True)
        return data


class ElevenLabsProvider(HttpProvider):
    """ElevenLabs sound generation, authenticated with the xi-api-key header."""

    name = "elevenlabs"

    def __init__(self, api_key: str, url: str = ELEVENLABS_URL, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self.url = url

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "audio/mpeg, audio/mp4, audio/wav, */*",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }

    async def generate(self, prompt: str) -> bytes:
        payload = {
            "text": prompt,
            "duration_seconds": self.clip_seconds,
            "prompt_influence": 0.3,
        }
        async with self._client() as client:
            resp = await self._request(client, "POST", self.url, json=payload)
            data = self._audio(resp)
        log.info("ElevenLabs returned %d bytes of audio", len(data))
        return data


class ReplicateProvider(HttpProvider):
    """MusicGen on Replicate: create a prediction, poll it, download the output."""

    name = "replicate"

    def __init__(
        self,
        api_key: str,
        url: str = REPLICATE_URL,
        poll_interval: float = 1.0,
        max_polls: int = 60,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.url = url
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate(self, prompt: str) -> bytes:
        payload = {
            "version": REPLICATE_MUSICGEN_VERSION,
            "input": {
                "prompt": f"{prompt}, ambient, peaceful, instrumental, {self.clip_seconds:g} seconds",
                "model_version": "stereo-large",
                "output_format": self.audio_format,
                "normalization_strategy": "peak",
            },
        }
        async with self._client() as client:
            resp = await self._request(client, "POST", self.url, json=payload)
            prediction = self._json(resp)
            prediction = await self._poll(client, prediction)
            output = prediction.get("output")
            if isinstance(output, list):
                output = output[0] if output else None
            if not isinstance(output, str) or not output:
                raise self._error(resp.status_code, f"Prediction has no output: {prediction}", True)
            audio_resp = await self._download(client, output)
            data = self._audio(audio_resp)
        log.info("Replicate prediction %s returned %d bytes", prediction.get("id"), len(data))
        return data

    async def _poll(self, client: httpx.AsyncClient, prediction: dict) -> dict:
        polls = 0
        while prediction.get("status") in ("starting", "processing"):
            if polls >= self.max_polls:
                raise self._error(None, f"Prediction {prediction.get('id')} timed out")
            await asyncio.sleep(self.poll_interval)
            prediction_url = prediction.get("urls", {}).get("get") or f"{self.url}/{prediction.get('id')}"
            resp = await self._request(client, "GET", prediction_url)
            prediction = self._json(resp)
            polls += 1

        if prediction.get("status") != "succeeded":
            raise self._error(
                502,
                f"Prediction {prediction.get('status')}: {prediction.get('error') or 'unknown error'}",
            )
        return prediction


class HuggingFaceProvider(HttpProvider):
    """facebook/musicgen-small on the Hugging Face inference API."""

    name = "huggingface"
    audio_format = "flac"

    def __init__(self, api_key: str, url: str = HUGGINGFACE_URL, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self.url = url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate(self, prompt: str) -> bytes:
        payload = {
            "inputs": f"{prompt}, peaceful, ambient, instrumental music, {self.clip_seconds:g} seconds",
        }
        async with self._client() as client:
            resp = await self._request(client, "POST", self.url, json=payload)
            data = self._audio(resp)
        log.info("Hugging Face returned %d bytes of audio", len(data))
        return data


def build_providers(
    settings: EngineSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ProviderClient]:
    """Enabled providers in priority order. A provider needs its flag and a credential."""
    providers: list[ProviderClient] = []
    common = {"timeout": settings.provider_timeout, "transport": transport}
    if settings.elevenlabs_enabled and settings.elevenlabs_api_key:
        providers.append(ElevenLabsProvider(settings.elevenlabs_api_key, **common))
    if settings.replicate_enabled and settings.replicate_api_token:
        providers.append(ReplicateProvider(settings.replicate_api_token, **common))
    if settings.huggingface_enabled and settings.huggingface_api_token:
        providers.append(HuggingFaceProvider(settings.huggingface_api_token, **common))
    log.info("Enabled providers: %s", [p.name for p in providers] or "none (procedural only)")
    return providers
