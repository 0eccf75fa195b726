import logging
from datetime import datetime
from typing import Optional

from extraction.prompts import build_system_prompt
from llm.llm_client import LLMClient
from talk2task.errors import ValidationError

logger = logging.getLogger(__name__)


class TaskExtractor:
    """Turns free-form text into the model's raw answer. Parsing happens in the normalizer."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm = llm_client or LLMClient()

    def extract(self, text: str, now_utc: datetime, user_timezone: str = "UTC") -> str:
        if not text or not text.strip():
            raise ValidationError("Text input is required")

        system = build_system_prompt(now_utc, user_timezone)
        logger.info(f"Extracting task from text: {text[:50]}...")
        raw = self.llm.complete(system, text)
        logger.debug(f"Raw extraction output: {raw[:200]}")
        return raw
