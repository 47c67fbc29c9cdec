"""Model provider integrations"""

from .client import LLMClient
from .http import HTTPProvider
from .models import get_model_type, get_provider
from .prompts import build_final_prompt, build_request, format_instructions

__all__ = [
    "LLMClient",
    "HTTPProvider",
    "get_model_type",
    "get_provider",
    "build_final_prompt",
    "build_request",
    "format_instructions",
]
