"""
Language model client — Groq chat completion returning raw text for the intent resolver.
complete(messages, timeout) -> str. Timeouts raise IntentTimeoutError; other service
failures raise ModelUnavailable so the resolver can use its heuristic planner.
"""
import logging
import os
from typing import Dict, List, Optional

import groq
from dotenv import load_dotenv
from groq import Groq

from utils.errors import IntentTimeoutError

load_dotenv()

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
DEFAULT_MODEL = "llama-3.3-70b-versatile"
GROQ_MODEL = os.getenv("GROQ_MODEL", DEFAULT_MODEL)
GROQ_TEMPERATURE = float(os.getenv("GROQ_TEMPERATURE", "0"))
GROQ_MAX_TOKENS = int(os.getenv("GROQ_MAX_TOKENS", "512"))
INTENT_TIMEOUT_SECONDS = float(os.getenv("INTENT_TIMEOUT_SECONDS", "30"))

logger = logging.getLogger(__name__)


class ModelUnavailable(Exception):
    """The model service failed for a reason other than a timeout."""


class GroqClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.model = model or GROQ_MODEL
        self.temperature = GROQ_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or GROQ_MAX_TOKENS
        # Retries would stretch the request past the intent timeout
        self._client = Groq(api_key=api_key or GROQ_API_KEY, max_retries=0)

    def complete(self, messages: List[Dict[str, str]], timeout: float = INTENT_TIMEOUT_SECONDS) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                timeout=timeout,
            )
        except groq.APITimeoutError as e:
            logger.warning("llm_client: timeout after %ss model=%s", timeout, self.model)
            raise IntentTimeoutError(detail=str(e)) from e
        except groq.APIError as e:
            logger.error("llm_client: model call failed model=%s error=%s", self.model, e)
            raise ModelUnavailable(str(e)) from e
        return (response.choices[0].message.content or "").strip()


def get_llm_client() -> Optional[GroqClient]:
    """Groq client when GROQ_API_KEY is configured, else None (heuristic planner)."""
    if not GROQ_API_KEY:
        return None
    return GroqClient()
