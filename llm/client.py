"""Multi-provider model client backed by the vendor SDKs"""

import asyncio
import base64
import logging
from typing import Optional

from core.exceptions import ProviderError
from core.enums import JobStatus, LLMProvider, ModelType
from core.interfaces import ModelProvider
from core.models import (
    DeferredResult,
    FailedResult,
    ImmediateResult,
    JobStatusResult,
    ProviderRequest,
    ProviderResult,
)
from config import settings
from .models import get_model_type, get_provider

try:
    import anthropic
    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False

try:
    import openai
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

try:
    import google.genai as genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False

logger = logging.getLogger(__name__)

OPENAI_VIDEO_CONTENT_URL = "https://api.openai.com/v1/videos/{video_id}/content"

AUDIO_MIME_TYPES = {
    "mp3": "audio/mpeg",
    "opus": "audio/opus",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "pcm": "audio/pcm",
}

# (resolution, portrait?) -> Sora size
VIDEO_SIZES = {
    ("720p", True): "720x1280",
    ("720p", False): "1280x720",
    ("1080p", True): "1024x1792",
    ("1080p", False): "1792x1024",
}


def video_size(resolution: Optional[str], aspect_ratio: Optional[str]) -> str:
    portrait = (aspect_ratio or "9:16") != "16:9"
    return VIDEO_SIZES.get((resolution or "720p", portrait), VIDEO_SIZES[("720p", portrait)])


class LLMClient(ModelProvider):
    """Routes each request to the SDK serving its model.

    Text: OpenAI, Anthropic or Gemini. Images: DALL-E or Imagen. Video:
    Sora, as a deferred job. Audio: OpenAI TTS, returned as a data URL.
    """

    def __init__(self):
        self.providers = self._initialize_providers()
        self.timeout = settings.PROVIDER_TIMEOUT

    def _initialize_providers(self) -> dict:
        """Initialize available SDK clients"""
        providers = {}

        if ANTHROPIC_AVAILABLE and settings.ANTHROPIC_API_KEY:
            providers[LLMProvider.ANTHROPIC] = anthropic.Anthropic(
                api_key=settings.ANTHROPIC_API_KEY,
                timeout=settings.PROVIDER_TIMEOUT
            )

        if OPENAI_AVAILABLE and settings.OPENAI_API_KEY:
            providers[LLMProvider.OPENAI] = openai.OpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.PROVIDER_TIMEOUT
            )

        if GEMINI_AVAILABLE and settings.GOOGLE_API_KEY:
            providers[LLMProvider.GEMINI] = genai.Client(api_key=settings.GOOGLE_API_KEY)

        if not providers:
            raise ProviderError(
                "No model providers available. "
                "Please configure at least one API key."
            )

        return providers

    def _client(self, provider: LLMProvider):
        client = self.providers.get(provider)
        if client is None:
            raise ProviderError(f"{provider.value} is not configured")
        return client

    async def _in_executor(self, fn):
        # SDK clients are synchronous
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def generate(self, request: ProviderRequest) -> ProviderResult:
        model_type = get_model_type(request.model)
        provider = get_provider(request.model)
        try:
            if model_type == ModelType.IMAGE:
                return await self._generate_image(provider, request)
            if model_type == ModelType.VIDEO:
                return await self._generate_video(request)
            if model_type == ModelType.AUDIO:
                return await self._generate_audio(request)
            return await self._generate_text(provider, request)
        except ProviderError as e:
            return FailedResult(error=e.message)
        except Exception as e:
            logger.warning(f"{provider.value} request for {request.model} failed: {e}")
            return FailedResult(error=str(e) or e.__class__.__name__)

    async def check_job(self, job_id: str) -> JobStatusResult:
        client = self._client(LLMProvider.OPENAI)
        video = await self._in_executor(lambda: client.videos.retrieve(job_id))
        status = JobStatus.from_provider(video.status)

        if status == JobStatus.COMPLETE:
            return JobStatusResult(
                status=status,
                output=OPENAI_VIDEO_CONTENT_URL.format(video_id=job_id),
            )
        if status == JobStatus.ERROR:
            error = getattr(video, "error", None)
            message = getattr(error, "message", None) or "Video generation failed"
            return JobStatusResult(status=status, error=message)
        return JobStatusResult(status=status)

    # ─────────────────────────────────────────────────────────────
    # Text
    # ─────────────────────────────────────────────────────────────

    async def _generate_text(self, provider: LLMProvider, request: ProviderRequest) -> ProviderResult:
        max_tokens = request.format_options.max_tokens or settings.MAX_TOKENS

        if provider == LLMProvider.ANTHROPIC:
            client = self._client(provider)
            response = await self._in_executor(
                lambda: client.messages.create(
                    model=request.model,
                    max_tokens=max_tokens,
                    messages=[{"role": "user", "content": request.resolved_prompt}],
                    temperature=request.temperature
                )
            )
            return ImmediateResult(output=response.content[0].text)

        if provider == LLMProvider.GEMINI:
            client = self._client(provider)
            response = await self._in_executor(
                lambda: client.models.generate_content(
                    model=request.model,
                    contents=request.resolved_prompt,
                    config={
                        "max_output_tokens": max_tokens,
                        "temperature": request.temperature
                    }
                )
            )
            return ImmediateResult(output=response.text or "")

        client = self._client(LLMProvider.OPENAI)
        kwargs = {}
        if request.format_options.max_tokens:
            kwargs["max_tokens"] = request.format_options.max_tokens
        response = await self._in_executor(
            lambda: client.chat.completions.create(
                model=request.model,
                messages=[{"role": "user", "content": request.resolved_prompt}],
                temperature=request.temperature,
                **kwargs
            )
        )
        return ImmediateResult(output=response.choices[0].message.content or "")

    # ─────────────────────────────────────────────────────────────
    # Media
    # ─────────────────────────────────────────────────────────────

    async def _generate_image(self, provider: LLMProvider, request: ProviderRequest) -> ProviderResult:
        if provider == LLMProvider.GEMINI:
            client = self._client(provider)
            response = await self._in_executor(
                lambda: client.models.generate_images(
                    model=request.model,
                    prompt=request.resolved_prompt,
                    config={"number_of_images": 1}
                )
            )
            if not response.generated_images:
                raise ProviderError("No image returned")
            image_bytes = response.generated_images[0].image.image_bytes
            return ImmediateResult(output=_data_url("image/png", image_bytes))

        client = self._client(LLMProvider.OPENAI)
        response = await self._in_executor(
            lambda: client.images.generate(
                model=request.model,
                prompt=request.resolved_prompt,
                size=settings.IMAGE_SIZE,
                n=1
            )
        )
        image = response.data[0]
        if image.url:
            return ImmediateResult(output=image.url)
        return ImmediateResult(output=f"data:image/png;base64,{image.b64_json}")

    async def _generate_video(self, request: ProviderRequest) -> ProviderResult:
        client = self._client(LLMProvider.OPENAI)
        options = request.format_options
        video = await self._in_executor(
            lambda: client.videos.create(
                model=request.model,
                prompt=request.resolved_prompt,
                seconds=options.video_seconds or "8",
                size=video_size(options.video_resolution, options.video_aspect_ratio)
            )
        )
        return DeferredResult(job_id=video.id, status=JobStatus.from_provider(video.status))

    async def _generate_audio(self, request: ProviderRequest) -> ProviderResult:
        client = self._client(LLMProvider.OPENAI)
        options = request.format_options
        audio_format = options.audio_format or "mp3"
        response = await self._in_executor(
            lambda: client.audio.speech.create(
                model=request.model,
                voice=options.audio_voice or "alloy",
                input=request.resolved_prompt,
                speed=options.audio_speed or 1.0,
                response_format=audio_format
            )
        )
        mime = AUDIO_MIME_TYPES.get(audio_format, "audio/mpeg")
        return ImmediateResult(output=_data_url(mime, response.content))


def _data_url(mime: str, payload: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"
