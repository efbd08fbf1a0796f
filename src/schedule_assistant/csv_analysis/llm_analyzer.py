"""LLM enrichment of parsed schedule entries using Ollama."""

import asyncio
import logging
import time
import tomllib
from typing import Any

import ollama

from .config import (
    DEFAULT_ANALYSIS_PROMPT,
    DEFAULT_LANGUAGE,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_MAX_RETRIES,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_TEMPERATURE,
    DEFAULT_OLLAMA_TIMEOUT,
    MAX_PRIORITY,
    MIN_PRIORITY,
)
from .exceptions import AIAnalysisError
from .interfaces import EventAnalyzer
from .models import AIInsights, ParsedEvent

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {"study", "exam", "meeting", "work", "personal", "other"}


class LLMScheduleAnalyzer(EventAnalyzer):
    """Scores and annotates parsed schedule entries with a local LLM via Ollama."""

    def __init__(
        self,
        model: str = DEFAULT_OLLAMA_MODEL,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        timeout: float = DEFAULT_OLLAMA_TIMEOUT,
        max_retries: int = DEFAULT_OLLAMA_MAX_RETRIES,
        temperature: float = DEFAULT_OLLAMA_TEMPERATURE,
    ) -> None:
        """
        Initialize LLM analyzer.

        Args:
            model: Ollama model name
            base_url: Ollama service URL
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            temperature: LLM temperature for generation
        """
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.temperature = temperature
        self._client = ollama.AsyncClient(host=base_url)

    def _generate_prompt(
        self, event: ParsedEvent, raw_text: str, language: str = DEFAULT_LANGUAGE
    ) -> str:
        """
        Generate the analysis prompt for one entry.

        Args:
            event: Rule-based parse of the entry
            raw_text: Original row text
            language: Language of the suggestions

        Returns:
            Formatted prompt string
        """
        # Sanitize input to prevent prompt injection
        sanitized = raw_text.replace("\n", " ").replace('"', "'")[:500]

        return DEFAULT_ANALYSIS_PROMPT.format(
            raw_text=sanitized,
            title=event.title.replace('"', "'"),
            start=event.start_datetime.isoformat(),
            end=event.end_datetime.isoformat(),
            location=event.location.replace('"', "'"),
            language=language,
        )

    def _parse_response(self, response_text: str) -> AIInsights:
        """
        Parse LLM response into AIInsights.

        Args:
            response_text: Raw TOML response text from LLM

        Returns:
            AIInsights object

        Raises:
            AIAnalysisError: If response cannot be parsed
        """
        try:
            data = tomllib.loads(response_text)
        except tomllib.TOMLDecodeError as e:
            raise AIAnalysisError(f"Invalid TOML response: {e}") from e

        if "confidence" not in data:
            raise AIAnalysisError("Missing required field: confidence")

        try:
            confidence = float(data["confidence"])
        except (TypeError, ValueError) as e:
            raise AIAnalysisError(f"Invalid confidence '{data['confidence']}'") from e
        confidence = max(0.0, min(1.0, confidence))

        category = None
        if data.get("category"):
            category = str(data["category"]).lower()
            if category not in VALID_CATEGORIES:
                logger.warning(f"Invalid category '{data['category']}', ignoring")
                category = None

        priority = None
        if data.get("priority") is not None:
            try:
                priority = max(MIN_PRIORITY, min(MAX_PRIORITY, int(data["priority"])))
            except (TypeError, ValueError):
                logger.warning(f"Invalid priority '{data['priority']}', ignoring")

        suggestions = data.get("suggestions") or []
        if isinstance(suggestions, str):
            suggestions = [suggestions]

        metadata: dict[str, Any] = {}
        known_fields = {"confidence", "category", "priority", "suggestions"}
        for key, value in data.items():
            if key not in known_fields:
                metadata[key] = value

        return AIInsights(
            confidence_score=confidence,
            suggestions=[str(s) for s in suggestions],
            category=category,
            priority=priority,
            metadata=metadata,
        )

    async def analyze_event(
        self, event: ParsedEvent, raw_text: str, language: str = DEFAULT_LANGUAGE
    ) -> AIInsights:
        """
        Ask the LLM to score and annotate a parsed entry.

        Args:
            event: Rule-based parse of the entry
            raw_text: Original row text
            language: Language of the suggestions

        Returns:
            AIInsights with confidence, suggestions and optional overrides

        Raises:
            AIAnalysisError: If analysis fails
        """
        prompt = self._generate_prompt(event, raw_text, language)
        start_time = time.time()

        for attempt in range(self.max_retries):
            try:
                response = await asyncio.wait_for(
                    self._client.chat(
                        model=self.model,
                        messages=[{"role": "user", "content": prompt}],
                        options={"temperature": self.temperature},
                    ),
                    timeout=self.timeout,
                )

                content = response["message"]["content"]
                result = self._parse_response(content)

                inference_time = time.time() - start_time
                result.metadata["inference_time"] = inference_time

                logger.info(
                    f"AI analysis complete: '{event.title}', "
                    f"confidence={result.confidence_score:.2f}, "
                    f"time={inference_time:.3f}s"
                )

                return result

            except TimeoutError as e:
                logger.error(f"Timeout on attempt {attempt + 1}/{self.max_retries}: {e}")
                if attempt < self.max_retries - 1:
                    # Exponential backoff
                    await asyncio.sleep(2**attempt)
                else:
                    raise AIAnalysisError(
                        f"Max retries exceeded after {self.max_retries} attempts"
                    ) from e

            except AIAnalysisError:
                raise

            except ConnectionError as e:
                logger.error(f"Connection error: {e}")
                raise AIAnalysisError(f"Connection failed: {e}") from e

            except Exception as e:
                logger.error(f"AI analysis error: {e}")
                raise AIAnalysisError(f"AI analysis failed: {e}") from e

        raise AIAnalysisError(f"Max retries exceeded after {self.max_retries} attempts")
