"""
Text Generation Backend
=======================

Every LLM-backed stage (SOAP notes, insights, prescriptions, translation,
question answering, diarization-by-text) talks to one small capability:

    generate(system_prompt, user_prompt, json_mode=False) -> str

``OllamaTextGenerator`` implements it with a LangChain chain
(``ChatPromptTemplate | OllamaLLM | StrOutputParser``) against a local
Ollama server. JSON mode switches Ollama's constrained ``format="json"``
output on.

Prompts are passed as template *variables*, never as template text, so the
literal JSON braces in our schemas are not parsed as placeholders.
"""

import json
import logging
import re
from typing import Any, Callable, Optional, Protocol, Union

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import OllamaLLM

from config import Settings, get_settings
from exceptions import ConsultScribeError, OllamaConnectionError, TextGenerationError


logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def parse_json_response(text: str) -> Any:
    """
    Parse a model response as JSON.

    Markdown code fences (```json ... ```) are stripped first.

    Raises:
        ValueError: If the response is empty or not valid JSON
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _CODE_FENCE.sub("", cleaned).strip()
    if not cleaned:
        raise ValueError("Empty response")
    return json.loads(cleaned)


class TextGeneratorProtocol(Protocol):
    """Interface for prompt-in, text-out generation."""

    def generate(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        """
        Generate a completion.

        Raises:
            OllamaConnectionError: If the backend is unreachable
            TextGenerationError: For any other backend failure
        """
        ...


class OllamaTextGenerator:
    """
    Text generation with a locally running Ollama model via LangChain.

    Two LLM handles are kept (plain text and JSON-constrained); each is
    created on first use.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Optional[OllamaLLM] = None,
        json_llm: Optional[OllamaLLM] = None
    ):
        """
        Initialize the generator.

        Args:
            settings: Application settings (uses defaults if not provided)
            llm: Pre-configured plain-text LLM (created lazily if not provided)
            json_llm: Pre-configured JSON-mode LLM (created lazily if not provided)
        """
        self.settings = settings or get_settings()
        self._llm = llm
        self._json_llm = json_llm
        self._prompt = ChatPromptTemplate.from_messages([
            ("system", "{system_prompt}"),
            ("human", "{user_prompt}"),
        ])

        logger.info(
            f"OllamaTextGenerator initialized with model: {self.settings.ollama_model}"
        )

    def _create_llm(self, json_mode: bool) -> OllamaLLM:
        logger.info(
            f"Initializing Ollama LLM: {self.settings.ollama_model} at "
            f"{self.settings.ollama_base_url} (json_mode={json_mode})"
        )
        kwargs = dict(
            model=self.settings.ollama_model,
            base_url=self.settings.ollama_base_url,
            temperature=self.settings.ollama_temperature,
            num_ctx=self.settings.ollama_context_window,
            client_kwargs={"timeout": self.settings.ollama_timeout},
        )
        if json_mode:
            kwargs["format"] = "json"
        return OllamaLLM(**kwargs)

    @property
    def llm(self) -> OllamaLLM:
        if self._llm is None:
            self._llm = self._create_llm(json_mode=False)
        return self._llm

    @property
    def json_llm(self) -> OllamaLLM:
        if self._json_llm is None:
            self._json_llm = self._create_llm(json_mode=True)
        return self._json_llm

    def generate(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        chain = self._prompt | (self.json_llm if json_mode else self.llm) | StrOutputParser()
        try:
            response = chain.invoke({
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
            })
        except Exception as e:
            raise self._translate_error(e) from e

        logger.debug(f"Received response ({len(response)} chars, json_mode={json_mode})")
        return response

    def _translate_error(self, error: Exception) -> ConsultScribeError:
        message = str(error)
        lowered = message.lower()
        if (
            isinstance(error, ConnectionError)
            or "connection" in lowered
            or "refused" in lowered
        ):
            logger.error(f"Cannot reach Ollama at {self.settings.ollama_base_url}: {message}")
            return OllamaConnectionError(url=self.settings.ollama_base_url, original_error=message)
        logger.error(f"Ollama generation failed: {message}")
        return TextGenerationError(reason=message)


Response = Union[str, Exception, Callable[[str, str, bool], str]]


class MockTextGenerator:
    """
    Scripted text generator for testing.

    Responses are consumed in order; each is a string to return, an
    exception to raise, or a callable ``(system, user, json_mode) -> str``.
    When the script runs out, ``default`` is returned.

    Usage in tests:
        generator = MockTextGenerator(responses=['{"insights": ["a"]}'])
        generator = MockTextGenerator(responses=[TextGenerationError("down")])
    """

    def __init__(
        self,
        responses: Optional[list[Response]] = None,
        default: str = "{}"
    ):
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def generate(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "json_mode": json_mode,
        })
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(system_prompt, user_prompt, json_mode)
        return response


# =============================================================================
# Factory Function
# =============================================================================

def create_text_generator(
    settings: Optional[Settings] = None,
    use_mock: bool = False
) -> TextGeneratorProtocol:
    """Create the Ollama generator, or a scripted mock for tests."""
    if use_mock:
        logger.info("Creating mock text generator")
        return MockTextGenerator()
    logger.info("Creating Ollama text generator")
    return OllamaTextGenerator(settings=settings)
