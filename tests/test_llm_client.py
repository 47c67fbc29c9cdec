from types import SimpleNamespace

import pytest

from core.enums import JobStatus, LLMProvider
from core.exceptions import ProviderError
from core.models import DeferredResult, FailedResult, FormatOptions, ImmediateResult, ProviderRequest
from llm.client import LLMClient, OPENAI_VIDEO_CONTENT_URL, video_size


class FakeOpenAI:
    """Just the SDK surface the client touches"""

    def __init__(self):
        self.calls = []
        self.video_status = "in_progress"
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))
        self.images = SimpleNamespace(generate=self._image)
        self.videos = SimpleNamespace(create=self._video, retrieve=self._retrieve)
        self.audio = SimpleNamespace(speech=SimpleNamespace(create=self._speech))

    def _chat(self, **kwargs):
        self.calls.append(("chat", kwargs))
        message = SimpleNamespace(content=f"echo: {kwargs['messages'][0]['content']}")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def _image(self, **kwargs):
        self.calls.append(("image", kwargs))
        return SimpleNamespace(data=[SimpleNamespace(url="https://cdn.example.com/cat.png", b64_json=None)])

    def _video(self, **kwargs):
        self.calls.append(("video", kwargs))
        return SimpleNamespace(id="video_123", status="queued")

    def _retrieve(self, video_id):
        return SimpleNamespace(status=self.video_status, error=SimpleNamespace(message="blocked"))

    def _speech(self, **kwargs):
        self.calls.append(("speech", kwargs))
        return SimpleNamespace(content=b"abc")


class FakeAnthropic:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = SimpleNamespace(create=self._create)

    def _create(self, **kwargs):
        if self.fail:
            raise RuntimeError("overloaded_error")
        return SimpleNamespace(content=[SimpleNamespace(text=f"claude: {kwargs['max_tokens']}")])


@pytest.fixture
def openai_client():
    return FakeOpenAI()


@pytest.fixture
def client(monkeypatch, openai_client):
    providers = {LLMProvider.OPENAI: openai_client, LLMProvider.ANTHROPIC: FakeAnthropic()}
    monkeypatch.setattr(LLMClient, "_initialize_providers", lambda self: providers)
    return LLMClient()


def request(model, prompt="hello", **options):
    return ProviderRequest(
        resolved_prompt=prompt,
        model=model,
        temperature=0.3,
        format_options=FormatOptions(**options),
    )


@pytest.mark.asyncio
async def test_openai_text(client, openai_client):
    result = await client.generate(request("gpt-4o", max_tokens=25))

    assert result == ImmediateResult(output="echo: hello")
    kind, kwargs = openai_client.calls[0]
    assert kind == "chat"
    assert kwargs["max_tokens"] == 25
    assert kwargs["temperature"] == 0.3


@pytest.mark.asyncio
async def test_anthropic_text_uses_default_token_budget(client):
    result = await client.generate(request("claude-3-5-sonnet-20241022"))

    assert result.output == "claude: 4096"


@pytest.mark.asyncio
async def test_sdk_errors_become_failed_results(client):
    client.providers[LLMProvider.ANTHROPIC] = FakeAnthropic(fail=True)

    assert await client.generate(request("claude-3-haiku-20240307")) == FailedResult(error="overloaded_error")


@pytest.mark.asyncio
async def test_unconfigured_provider(client):
    result = await client.generate(request("gemini-2.0-flash"))

    assert result == FailedResult(error="gemini is not configured")


@pytest.mark.asyncio
async def test_image_returns_url(client, openai_client):
    result = await client.generate(request("dall-e-3", "a cat"))

    assert result.output == "https://cdn.example.com/cat.png"
    assert openai_client.calls[0][1]["n"] == 1


@pytest.mark.asyncio
async def test_video_is_deferred(client, openai_client):
    result = await client.generate(
        request("sora-2", "a film", video_seconds="4", video_resolution="720p", video_aspect_ratio="16:9")
    )

    assert result == DeferredResult(job_id="video_123", status=JobStatus.QUEUED)
    assert openai_client.calls[0][1]["size"] == "1280x720"
    assert openai_client.calls[0][1]["seconds"] == "4"


@pytest.mark.asyncio
async def test_video_job_status(client, openai_client):
    assert (await client.check_job("video_123")).status == JobStatus.IN_PROGRESS

    openai_client.video_status = "completed"
    done = await client.check_job("video_123")
    assert done.status == JobStatus.COMPLETE
    assert done.output == OPENAI_VIDEO_CONTENT_URL.format(video_id="video_123")

    openai_client.video_status = "failed"
    failed = await client.check_job("video_123")
    assert failed.status == JobStatus.ERROR
    assert failed.error == "blocked"


@pytest.mark.asyncio
async def test_audio_is_a_data_url(client):
    result = await client.generate(request("tts-1", "read me", audio_voice="nova", audio_format="wav"))

    assert result.output == "data:audio/wav;base64,YWJj"


def test_video_size():
    assert video_size("720p", "9:16") == "720x1280"
    assert video_size("1080p", "16:9") == "1792x1024"
    assert video_size(None, None) == "720x1280"
    assert video_size("4k", "16:9") == "1280x720"


def test_no_providers(monkeypatch):
    monkeypatch.setattr("llm.client.settings.OPENAI_API_KEY", None)
    monkeypatch.setattr("llm.client.settings.ANTHROPIC_API_KEY", None)
    monkeypatch.setattr("llm.client.settings.GOOGLE_API_KEY", None)

    with pytest.raises(ProviderError):
        LLMClient()
