"""Exceptions raised by the analysis pipeline."""


class ArticleLensError(Exception):
    """Base class for pipeline errors."""


class ModelCallError(ArticleLensError):
    """A model backend call failed or returned an unusable response.

    Always recovered at the call site with that call's fallback value.
    """


class ProviderNotConfiguredError(ArticleLensError):
    """No client or credentials exist for a model's provider."""

    def __init__(self, provider: str):
        super().__init__(f"Provider '{provider}' is not configured")
        self.provider = provider


class AnalysisUnavailableError(ArticleLensError):
    """Every candidate model for an analysis request is unusable.

    Callers should retry later or skip the article.
    """

    def __init__(self, candidates: list[str]):
        super().__init__(
            "Analysis unavailable: no usable model among " + (", ".join(candidates) or "none")
        )
        self.candidates = candidates
