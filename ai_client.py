"""
Generative model client.

Wraps the Anthropic Messages API behind one call: send a
``GenerationRequest``, get the generated text back or ``None``. Structured
replies are requested through a forced tool call whose input schema is the
request's response schema; the tool input comes back as JSON text.
"""

import json
import logging
import re
from typing import Optional

import anthropic

from prompts import GenerationRequest

logger = logging.getLogger(__name__)

MISSING_KEY_STATUS = "API key not found. Please check environment variables."
STRUCTURED_TOOL = "record_result"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Drop a surrounding ```json fence the model sometimes adds."""
    return _FENCE.sub("", text.strip())


def parse_score(text: Optional[str], default: int = 50) -> int:
    """Pull the first number out of a score reply and clamp it to 0-100."""
    if not text:
        return default
    numbers = re.findall(r"-?\d+(?:\.\d+)?", text)
    if not numbers:
        return default
    score = int(round(float(numbers[0])))
    return max(0, min(100, score))


class GenerativeClient:
    def __init__(self, api_key: Optional[str], model: str = "claude-sonnet-4-20250514",
                 max_tokens: int = 1000, client=None):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def _content(self, request: GenerationRequest):
        content = [{"type": "text", "text": request.prompt}]
        if request.inline_data:
            block_type = "document" if request.mime_type == "application/pdf" else "image"
            content.append({
                "type": block_type,
                "source": {
                    "type": "base64",
                    "media_type": request.mime_type,
                    "data": request.inline_data,
                },
            })
        return content

    def generate(self, request: GenerationRequest) -> Optional[str]:
        """Run one generation. Returns None when AI is unavailable or the call fails."""
        if not self.enabled:
            logger.error("Anthropic API key is not configured.")
            return None

        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": self._content(request)}],
        }
        if request.response_schema:
            kwargs["tools"] = [{
                "name": STRUCTURED_TOOL,
                "description": "Record the extracted result.",
                "input_schema": request.response_schema,
            }]
            kwargs["tool_choice"] = {"type": "tool", "name": STRUCTURED_TOOL}

        try:
            message = self._get_client().messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Error calling Anthropic API: %s", e)
            return None

        for block in message.content:
            if block.type == "tool_use":
                return json.dumps(block.input)
            if block.type == "text":
                return block.text
        logger.error("Anthropic API returned no usable content")
        return None
