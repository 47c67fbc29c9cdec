"""Model catalogue helpers"""

from core.enums import LLMProvider, ModelType

IMAGE_MODEL_MARKERS = ("dall-e", "imagen")
VIDEO_MODEL_MARKERS = ("sora",)
AUDIO_MODEL_MARKERS = ("tts",)

VALID_VIDEO_SECONDS = ("4", "8", "12")
DEFAULT_VIDEO_SECONDS = "8"


def get_model_type(model: str) -> ModelType:
    """Infer the output type of a model from its id"""
    model_id = (model or "").lower()
    if any(marker in model_id for marker in IMAGE_MODEL_MARKERS):
        return ModelType.IMAGE
    if any(marker in model_id for marker in VIDEO_MODEL_MARKERS):
        return ModelType.VIDEO
    if any(marker in model_id for marker in AUDIO_MODEL_MARKERS):
        return ModelType.AUDIO
    return ModelType.TEXT


def get_provider(model: str) -> LLMProvider:
    """SDK provider serving a model id"""
    model_id = (model or "").lower()
    if model_id.startswith("claude"):
        return LLMProvider.ANTHROPIC
    if model_id.startswith(("gemini", "imagen")):
        return LLMProvider.GEMINI
    return LLMProvider.OPENAI
