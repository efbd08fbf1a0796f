"""Abstract interfaces for schedule-import analysis."""

from abc import ABC, abstractmethod

from schedule_assistant.csv_analysis.config import DEFAULT_LANGUAGE
from schedule_assistant.csv_analysis.models import AIInsights, ParsedEvent


class EventAnalyzer(ABC):
    """Abstract interface for AI enrichment of parsed entries."""

    @abstractmethod
    async def analyze_event(
        self, event: ParsedEvent, raw_text: str, language: str = DEFAULT_LANGUAGE
    ) -> AIInsights:
        """
        Score and annotate one parsed schedule entry.

        The returned insights carry a confidence score and suggestions, and
        may carry category/priority values that override the rule-based
        parse.

        Args:
            event: Rule-based parse of the entry
            raw_text: Original row text the event was parsed from
            language: Language of the returned suggestions

        Returns:
            AIInsights for the entry

        Raises:
            AIAnalysisError: If the analyzer cannot produce a result
        """
        pass
