"""Google connector implementation.

Google offers an OpenAI-compatible endpoint for Gemini models, so this
connector extends the OpenAI connector and overrides what differs.
"""

from typing import Optional

from .base import ModelDescriptor
from .provider_openai import OpenAIConnector, OpenAIModelHandle

GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


class GoogleModelHandle(OpenAIModelHandle):
    """Gemini handle; the compatible endpoint expects 'max_tokens'."""

    max_tokens_param = "max_tokens"


class GoogleConnector(OpenAIConnector):
    """Connector for Google Gemini through the OpenAI-compatible API."""

    id = "google"
    display_name = "Google Gemini"
    models = [
        ModelDescriptor("gemini-2.5-pro", "Gemini 2.5 Pro", default=True),
        ModelDescriptor("gemini-2.5-flash", "Gemini 2.5 Flash"),
    ]
    env_keys = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
    base_url: Optional[str] = GOOGLE_BASE_URL
    handle_class = GoogleModelHandle
