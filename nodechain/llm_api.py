"""
llm_api.py — language model clients for the workflow synthesizer.

Pipeline:
Goal (free text) + tool catalog + feedback
    ->  (LLM generation)                LLMClient.generate()
JSON workflow draft
    ->  (parse + validate)              handled by WorkflowAgent
Validated Workflow
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from openai import APIError, APITimeoutError, AsyncOpenAI

from .config import get_settings
from .errors import ConfigurationError, LLMError
from .planner import plan_workflow
from .prompts import split_sections

logger = logging.getLogger(__name__)


# --------------------------
# CLIENTS
# --------------------------

class LLMClient(ABC):
    """ Text-in, text-out model interface used by the synthesizer. """

    @abstractmethod
    async def generate(self, system: str, prompt: str) -> str:
        pass


class OpenRouterClient(LLMClient):
    """
    Chat completion through OpenRouter's OpenAI-compatible endpoint.
    Model, key and base URL default to settings.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: Optional[float] = None,
                 temperature: float = 0.0):
        settings = get_settings()
        self.model = model or settings.workflow_model
        self.api_key = api_key or settings.openrouter_api_key
        self.base_url = base_url or settings.openrouter_base_url
        self.timeout = timeout if timeout is not None else settings.llm_timeout
        self.temperature = temperature
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("OPENROUTER_API_KEY is not set")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def generate(self, system: str, prompt: str) -> str:
        client = self._get_client()
        logger.debug("Requesting workflow draft from %s", self.model)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except APITimeoutError as e:
            raise LLMError(f"LLM request timed out: {e}", retryable=True) from e
        except APIError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise LLMError("LLM returned an empty answer", retryable=True)
        return response.choices[0].message.content


class PlannerLLMClient(LLMClient):
    """
    Offline stand-in for a model: reads the prompt sections and answers with
    a JSON draft built by `planner.plan_workflow`.
    """

    def __init__(self):
        self.prompts = []

    async def generate(self, system: str, prompt: str) -> str:
        self.prompts.append(prompt)
        sections = split_sections(system + "\n" + prompt)
        goal = sections.get("goal", "")
        tools = _json_section(sections, "tools") or []
        feedback = _json_section(sections, "feedback")
        return json.dumps(plan_workflow(goal, tools, feedback=feedback), indent=2)


def default_llm_client() -> LLMClient:
    """ OpenRouter when an API key is configured, the offline planner otherwise. """
    if get_settings().has_llm_key:
        return OpenRouterClient()
    logger.info("No OPENROUTER_API_KEY configured, using the offline planner")
    return PlannerLLMClient()


# -------------------------
# HELPERS
# -------------------------

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n(.*?)```", re.DOTALL)


def extract_json_block(text: str) -> str:
    """
    Pull the JSON payload out of a model answer: the first fenced block if
    there is one, else the outermost `{...}` span.
    """
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def _json_section(sections, name: str) -> Any:
    body = sections.get(name)
    if not body:
        return None
    try:
        return json.loads(extract_json_block(body))
    except ValueError:
        logger.warning("Section '%s' does not hold valid JSON", name)
        return None
