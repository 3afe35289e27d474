import json

import httpx
import pytest

from moodsound.config import EngineSettings
from moodsound.services.providers import (
    ElevenLabsProvider,
    HuggingFaceProvider,
    ProviderClient,
    ProviderError,
    ReplicateProvider,
    build_providers,
)

AUDIO = b"\xff\xfb" + b"\x00" * 4000


def audio_response(content: bytes = AUDIO, content_type: str = "audio/mpeg") -> httpx.Response:
    return httpx.Response(200, content=content, headers={"content-type": content_type})


class TestProviderError:
    @pytest.mark.parametrize("status", [None, 408, 429, 500, 503])
    def test_transient(self, status):
        """Network errors, timeouts, rate limits and 5xx are retryable."""
        assert ProviderError("x", status).transient

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_permanent(self, status):
        """Other client errors are not retryable."""
        assert not ProviderError("x", status).transient

    def test_malformed_payload_is_transient(self):
        """A 200 with an unusable body is worth retrying."""
        assert ProviderError("x", 200, "bad", malformed=True).transient


class TestElevenLabs:
    @pytest.mark.asyncio
    async def test_success(self):
        """Posts the prompt with the xi-api-key header and returns the audio bytes."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return audio_response()

        provider = ElevenLabsProvider("secret", transport=httpx.MockTransport(handler))
        assert await provider.generate("rainy afternoon") == AUDIO
        assert seen["headers"]["xi-api-key"] == "secret"
        assert seen["body"] == {"text": "rainy afternoon", "duration_seconds": 8.0, "prompt_influence": 0.3}

    @pytest.mark.asyncio
    async def test_http_error(self):
        """A non-2xx status raises ProviderError carrying the status and body."""
        transport = httpx.MockTransport(lambda r: httpx.Response(401, text="invalid api key"))
        with pytest.raises(ProviderError) as exc_info:
            await ElevenLabsProvider("bad", transport=transport).generate("x")
        assert exc_info.value.status == 401
        assert "invalid api key" in exc_info.value.body
        assert not exc_info.value.transient

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Connection failures raise a transient ProviderError without status."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await ElevenLabsProvider("k", transport=httpx.MockTransport(handler)).generate("x")
        assert exc_info.value.status is None
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_json_instead_of_audio(self):
        """A JSON body on a 200 is treated as a malformed response."""
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"detail": "queued"}))
        with pytest.raises(ProviderError) as exc_info:
            await ElevenLabsProvider("k", transport=transport).generate("x")
        assert exc_info.value.malformed

    @pytest.mark.asyncio
    async def test_tiny_payload(self):
        """Payloads under 1000 bytes are rejected."""
        transport = httpx.MockTransport(lambda r: audio_response(b"\x00" * 10))
        with pytest.raises(ProviderError):
            await ElevenLabsProvider("k", transport=transport).generate("x")


class TestReplicate:
    @pytest.mark.asyncio
    async def test_create_poll_download(self):
        """Creates a prediction, polls until it succeeds and downloads the output."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, str(request.url)))
            if request.method == "POST":
                assert request.headers["authorization"] == "Token tok"
                body = json.loads(request.content)
                assert body["input"]["prompt"].startswith("calm lake")
                return httpx.Response(
                    201,
                    json={"id": "p1", "status": "starting", "urls": {"get": "https://api.test/p/p1"}},
                )
            if request.url.path == "/p/p1":
                return httpx.Response(
                    200, json={"id": "p1", "status": "succeeded", "output": "https://cdn.test/out.mp3"}
                )
            return audio_response()

        provider = ReplicateProvider(
            "tok", url="https://api.test/predictions", poll_interval=0, transport=httpx.MockTransport(handler)
        )
        assert await provider.generate("calm lake") == AUDIO
        assert [method for method, _ in calls] == ["POST", "GET", "GET"]
        assert calls[-1][1] == "https://cdn.test/out.mp3"

    @pytest.mark.asyncio
    async def test_download_sends_no_credentials(self):
        """The API token stays with Replicate and is not sent to the output host."""
        downloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.org":
                downloads.append(request.headers)
                return audio_response()
            return httpx.Response(
                201, json={"id": "p1", "status": "succeeded", "output": "https://cdn.example.org/out.mp3"}
            )

        provider = ReplicateProvider("SECRET", transport=httpx.MockTransport(handler))
        assert await provider.generate("x") == AUDIO
        assert len(downloads) == 1
        assert "authorization" not in downloads[0]

    @pytest.mark.asyncio
    async def test_download_error(self):
        """A failed download raises ProviderError with the file host's status."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.example.org":
                return httpx.Response(404, text="gone")
            return httpx.Response(
                201, json={"id": "p1", "status": "succeeded", "output": ["https://cdn.example.org/out.mp3"]}
            )

        with pytest.raises(ProviderError) as exc_info:
            await ReplicateProvider("tok", transport=httpx.MockTransport(handler)).generate("x")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_failed_prediction(self):
        """A prediction ending in 'failed' raises a transient ProviderError."""
        transport = httpx.MockTransport(
            lambda r: httpx.Response(201, json={"id": "p1", "status": "failed", "error": "oom"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateProvider("tok", poll_interval=0, transport=transport).generate("x")
        assert "oom" in exc_info.value.body
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_poll_timeout(self):
        """A prediction that never finishes gives up after max_polls."""
        transport = httpx.MockTransport(
            lambda r: httpx.Response(200, json={"id": "p1", "status": "processing"})
        )
        provider = ReplicateProvider("tok", poll_interval=0, max_polls=3, transport=transport)
        with pytest.raises(ProviderError) as exc_info:
            await provider.generate("x")
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_missing_output(self):
        """A succeeded prediction without output is a malformed response."""
        transport = httpx.MockTransport(
            lambda r: httpx.Response(201, json={"id": "p1", "status": "succeeded", "output": []})
        )
        with pytest.raises(ProviderError) as exc_info:
            await ReplicateProvider("tok", transport=transport).generate("x")
        assert exc_info.value.malformed


class TestHuggingFace:
    @pytest.mark.asyncio
    async def test_success(self):
        """Uses a bearer token and returns FLAC bytes."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["inputs"] = json.loads(request.content)["inputs"]
            return audio_response(content_type="audio/flac")

        provider = HuggingFaceProvider("hf", transport=httpx.MockTransport(handler))
        assert await provider.generate("sunrise") == AUDIO
        assert provider.audio_format == "flac"
        assert seen["auth"] == "Bearer hf"
        assert seen["inputs"].startswith("sunrise, ")

    @pytest.mark.asyncio
    async def test_model_loading(self):
        """The 503 'model loading' response is retryable."""
        transport = httpx.MockTransport(lambda r: httpx.Response(503, json={"error": "loading"}))
        with pytest.raises(ProviderError) as exc_info:
            await HuggingFaceProvider("hf", transport=transport).generate("x")
        assert exc_info.value.transient


class TestBuildProviders:
    def test_priority_order(self):
        """Enabled providers with credentials come back in priority order."""
        settings = EngineSettings(
            elevenlabs_api_key="a",
            replicate_api_token="b",
            huggingface_api_token="c",
            huggingface_enabled=True,
        )
        providers = build_providers(settings)
        assert [p.name for p in providers] == ["elevenlabs", "replicate", "huggingface"]
        assert all(isinstance(p, ProviderClient) for p in providers)

    def test_missing_credentials(self):
        """Providers without credentials are skipped."""
        assert [p.name for p in build_providers(EngineSettings(replicate_api_token="b"))] == ["replicate"]
        assert build_providers(EngineSettings()) == []

    def test_disabled(self):
        """Disabled providers are skipped even with credentials."""
        settings = EngineSettings(elevenlabs_api_key="a", replicate_api_token="b").without_providers()
        assert build_providers(settings) == []
