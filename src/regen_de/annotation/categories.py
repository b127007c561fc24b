"""Keyword taxonomy for functional terms."""

from typing import Dict, Iterable, Optional

from ..config import CategoryConfig


class KeywordClassifier:
    """
    Assigns a category label to free-text term descriptions.

    Matching is a case-insensitive substring test. Categories are checked in
    configured order and the first one with a matching keyword wins, so a
    term hitting both the Regeneration and Fibrosis keyword sets is labeled
    Regeneration with the default configuration.
    """

    def __init__(self, config: Optional[CategoryConfig] = None):
        self.config = config or CategoryConfig()
        self._categories = tuple(
            (label, tuple(k.lower() for k in keywords))
            for label, keywords in self.config.categories
        )

    @property
    def labels(self) -> tuple:
        return tuple(label for label, _ in self._categories) + (self.config.default,)

    def classify(self, text: Optional[str]) -> str:
        if not text:
            return self.config.default
        lowered = text.lower()
        for label, keywords in self._categories:
            if any(keyword in lowered for keyword in keywords):
                return label
        return self.config.default

    def classify_all(self, texts: Iterable[str]) -> Dict[str, str]:
        return {text: self.classify(text) for text in texts}
