"""
Gemini gateway - prompt in, raw text out.

The gateway is built from an injected GeminiConfig rather than reading
module-level settings, so each instance carries its own key, model and
sampling parameters.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from ..config.settings import Settings
from ..exceptions import AIServiceError, ResponseFormatError

logger = logging.getLogger(__name__)

JSON_FENCE = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model_name: str = "gemini-2.5-flash"
    response_temperature: float = 0.1
    max_prompt_chars: int = 40000
    timeout: float = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiConfig":
        return cls(
            api_key=settings.GEMINI_API_KEY,
            model_name=settings.GEMINI_MODEL,
            response_temperature=settings.LLM_TEMPERATURE,
            max_prompt_chars=settings.MAX_PROMPT_CHARS,
            timeout=settings.LLM_TIMEOUT,
        )


def parse_ai_json(response_text: Optional[str]) -> Dict[str, Any]:
    """
    Interpret a model reply as a JSON object.

    Accepts a ```json fenced block or a bare JSON body; anything else raises
    ResponseFormatError.
    """
    if not response_text or not response_text.strip():
        raise ResponseFormatError("AI response is empty")

    match = JSON_FENCE.search(response_text)
    json_str = match.group(1).strip() if match else response_text.strip()

    try:
        result = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ResponseFormatError(f"AI response is not valid JSON: {e}")

    if not isinstance(result, dict):
        raise ResponseFormatError(f"AI response must be a JSON object, got {type(result).__name__}")
    return result


class GeminiGateway:
    """Thin async wrapper over google-generativeai's generate_content.

    The SDK keeps the API key in module-level state set by genai.configure,
    so every gateway in one process shares the key of the last one built.
    """

    def __init__(self, config: GeminiConfig):
        self.config = config
        self.model = None
        self._initialize()

    def _initialize(self):
        """Initialize the Gemini model with JSON-only, low-temperature output."""
        if self.config.api_key:
            genai.configure(api_key=self.config.api_key)

        self.model = genai.GenerativeModel(
            model_name=self.config.model_name,
            generation_config=genai.types.GenerationConfig(
                temperature=self.config.response_temperature,
                response_mime_type="application/json",
            ),
        )

    async def generate(self, prompt: str) -> str:
        """Send one prompt and return the reply text."""
        if len(prompt) > self.config.max_prompt_chars:
            raise AIServiceError(
                f"Prompt is {len(prompt)} characters, limit is {self.config.max_prompt_chars}"
            )

        logger.info(f"Gemini call (model: {self.config.model_name}, prompt: {len(prompt)} chars)")
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.model.generate_content, prompt),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            raise AIServiceError(f"Gemini call timed out after {self.config.timeout}s")
        except google_exceptions.GoogleAPICallError as e:
            raise AIServiceError(f"Gemini API call failed: {e.code} - {e.message}")
        except google_exceptions.GoogleAPIError as e:
            raise AIServiceError(f"Gemini API call failed: {e}")

        try:
            text = response.text
        except ValueError as e:
            # raised by the SDK when the candidate has no text parts
            raise AIServiceError(f"Gemini returned no text: {e}")

        if not text or not text.strip():
            raise AIServiceError("Gemini returned an empty response")
        return text
