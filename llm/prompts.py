"""Final prompt shaping applied after template resolution"""

import math
import re
from typing import Optional

from core.enums import ModelType
from core.models import Cell, FormatOptions, ProviderRequest
from .models import DEFAULT_VIDEO_SECONDS, VALID_VIDEO_SECONDS, get_model_type

FORMAT_INSTRUCTIONS = {
    "markdown": "Format your response as Markdown with proper headings, lists, and formatting.",
    "json": "Format your response as valid JSON.",
    "html": "Format your response as HTML.",
    "plain": "Format your response as plain text without any special formatting.",
    "bullet-list": "Format your response as a bulleted list.",
    "numbered-list": "Format your response as a numbered list.",
    "code": "Format your response as code with proper syntax highlighting.",
}

CHARACTER_LIMIT_INSTRUCTION = (
    "IMPORTANT: Your response must be exactly {limit} characters or less. "
    "Generate your complete response within this character limit. Do not exceed it."
)

IMAGE_URL_PATTERN = re.compile(
    r"https?://[^\s]+\.(jpg|jpeg|png|gif|webp|svg|bmp)(\?[^\s]*)?",
    re.IGNORECASE,
)
REFERENCED_IMAGE = "the referenced image"


def format_instructions(output_format: str) -> Optional[str]:
    return FORMAT_INSTRUCTIONS.get(output_format or "")


def sanitize_image_prompt(prompt: str) -> str:
    """Replace image URLs, which image models tend to reject"""
    text = IMAGE_URL_PATTERN.sub(REFERENCED_IMAGE, prompt)
    text = re.sub(
        rf"\s+{REFERENCED_IMAGE}\s+{REFERENCED_IMAGE}",
        f" {REFERENCED_IMAGE}",
        text,
        flags=re.IGNORECASE,
    )
    return re.sub(r"\s+", " ", text).strip()


def max_tokens_for(character_limit: int) -> Optional[int]:
    """Rough token budget for a character limit, 1 token per 4 characters"""
    if not character_limit or character_limit <= 0:
        return None
    return math.ceil(character_limit / 4)


def build_final_prompt(resolved_prompt: str, model: str, output_format: str = "", character_limit: int = 0) -> str:
    model_type = get_model_type(model)
    prompt = resolved_prompt

    if model_type == ModelType.TEXT:
        instructions = format_instructions(output_format)
        if instructions:
            prompt = f"{prompt}\n\n{instructions}"
    elif model_type == ModelType.IMAGE:
        prompt = sanitize_image_prompt(prompt)

    if character_limit and character_limit > 0 and model_type == ModelType.TEXT:
        prompt = f"{prompt}\n\n{CHARACTER_LIMIT_INSTRUCTION.format(limit=character_limit)}"

    return prompt


def format_options_for(cell: Cell) -> FormatOptions:
    model_type = get_model_type(cell.model)
    options = FormatOptions(
        character_limit=cell.character_limit or 0,
        output_format=cell.output_format or "",
        max_tokens=max_tokens_for(cell.character_limit),
    )
    if model_type == ModelType.VIDEO:
        seconds = str(cell.video_seconds or DEFAULT_VIDEO_SECONDS)
        options.video_seconds = seconds if seconds in VALID_VIDEO_SECONDS else DEFAULT_VIDEO_SECONDS
        options.video_resolution = cell.video_resolution or "720p"
        options.video_aspect_ratio = cell.video_aspect_ratio or "9:16"
    elif model_type == ModelType.AUDIO:
        options.audio_voice = cell.audio_voice or "alloy"
        options.audio_speed = cell.audio_speed or 1.0
        options.audio_format = cell.audio_format or "mp3"
    return options


def build_request(cell: Cell, resolved_prompt: str, user_id: str = None) -> ProviderRequest:
    """Provider request for a cell whose template resolved to `resolved_prompt`"""
    return ProviderRequest(
        resolved_prompt=build_final_prompt(
            resolved_prompt, cell.model, cell.output_format, cell.character_limit
        ),
        model=cell.model,
        temperature=cell.temperature,
        format_options=format_options_for(cell),
        user_id=user_id,
    )
