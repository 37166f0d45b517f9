from .openai_client import (
    OpenAiClient,
    build_image_prompt,
    fallback_title,
)

__all__ = ["OpenAiClient", "build_image_prompt", "fallback_title"]
