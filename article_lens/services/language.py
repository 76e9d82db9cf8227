"""Character-script language detection used to route model selection."""

import re
from dataclasses import dataclass

# Script buckets, checked in this order by quick_detect()
_SCRIPT_PATTERNS: dict[str, re.Pattern[str]] = {
    "hanzi": re.compile(r"[\u4e00-\u9fa5]"),
    "kana": re.compile(r"[\u3040-\u309f\u30a0-\u30ff]"),
    "hangul": re.compile(r"[\uac00-\ud7af]"),
    "cyrillic": re.compile(r"[\u0400-\u04ff]"),
    "arabic": re.compile(r"[\u0600-\u06ff]"),
    "latin": re.compile(r"[a-zA-Z]"),
}

_SCRIPT_LANGUAGE = {
    "hanzi": "zh",
    "kana": "ja",
    "hangul": "ko",
    "cyrillic": "ru",
    "arabic": "ar",
}

# Function words per Latin-script language (articles, prepositions, conjunctions)
_LATIN_FUNCTION_WORDS: dict[str, list[re.Pattern[str]]] = {
    "en": [
        re.compile(r"\b(the|and|is|in|at|of|to|a|an|be|are|was|were|been|being)\b"),
        re.compile(r"\b(this|that|these|those|with|from|for|about|as|into|like|through)\b"),
    ],
    "es": [
        re.compile(r"\b(el|la|de|que|y|a|en|un|una|es|son|con|por|para|como|estar|hay)\b"),
        re.compile(r"\b(este|esta|esto|pero|más|todo|también|tiempo|año|ver)\b"),
    ],
    "fr": [
        re.compile(r"\b(le|la|de|et|à|un|une|en|est|son|avec|pour|pas|plus|comme)\b"),
        re.compile(r"\b(ce|cet|cette|ces|mais|tout|aussi|temps|an|voir|faire)\b"),
    ],
    "de": [
        re.compile(r"\b(der|die|das|und|in|den|von|zu|sich|mit|für|auf|ist|im)\b"),
        re.compile(r"\b(dieser|diese|dieses|aber|auch|alle|zwischen|durch|wieder|ohne)\b"),
    ],
    "pt": [
        re.compile(r"\b(o|a|de|e|em|um|uma|é|são|com|para|não|se|mas|como|mais)\b"),
        re.compile(r"\b(este|esta|isto|tudo|também|tempo|ano|ver|por|entre)\b"),
    ],
    "it": [
        re.compile(r"\b(il|la|di|e|in|un|una|è|sono|con|per|non|ma|come|più)\b"),
        re.compile(r"\b(questo|questa|tutto|anche|tempo|anno|vedere)\b"),
    ],
}

# Text length at which the length component of confidence saturates
FULL_CONFIDENCE_LENGTH = 100

_SCRIPT_CONFIDENCE_BONUS = {
    "hanzi": 0.2,
    "kana": 0.2,
    "hangul": 0.2,
    "cyrillic": 0.15,
    "arabic": 0.15,
    "latin": 0.1,
    "other": 0.0,
}

LANGUAGE_NAMES: dict[str, str] = {
    "zh": "中文",
    "en": "English",
    "ja": "日本語",
    "ko": "한국어",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "pt": "Português",
    "it": "Italiano",
    "ru": "Русский",
    "ar": "العربية",
    "other": "Other",
}

SUPPORTED_LANGUAGES = frozenset(LANGUAGE_NAMES)


@dataclass(frozen=True)
class LanguageDetection:
    """Detected language of a text."""

    language: str  # ISO 639-1 code or "other"
    confidence: float  # 0-1
    script: str


class LanguageDetector:
    """Classifies text language from its dominant Unicode script."""

    def detect(self, text: str) -> LanguageDetection:
        """Detect the language of a text. Never raises."""
        if not text or not text.strip():
            return LanguageDetection(language="other", confidence=0.0, script="other")

        script = self._dominant_script(text)
        if script == "latin":
            language = self._detect_latin_language(text)
        else:
            language = _SCRIPT_LANGUAGE.get(script, "other")

        confidence = self._confidence(len(text), script, language)
        return LanguageDetection(language=language, confidence=confidence, script=script)

    def detect_batch(self, texts: list[str]) -> list[LanguageDetection]:
        return [self.detect(t) for t in texts]

    def quick_detect(self, text: str) -> str:
        """Ordered script checks only, for hot paths. Returns a language code."""
        if not text:
            return "other"
        for script, language in _SCRIPT_LANGUAGE.items():
            if _SCRIPT_PATTERNS[script].search(text):
                return language
        return "en"

    @staticmethod
    def language_name(code: str) -> str:
        return LANGUAGE_NAMES.get(code, "Unknown")

    @staticmethod
    def is_supported(code: str) -> bool:
        return code in SUPPORTED_LANGUAGES

    def _dominant_script(self, text: str) -> str:
        best_script = "other"
        best_count = 0
        for script, pattern in _SCRIPT_PATTERNS.items():
            count = len(pattern.findall(text))
            if count > best_count:
                best_script, best_count = script, count
        return best_script

    def _detect_latin_language(self, text: str) -> str:
        lowered = text.lower()
        best_language = "en"
        best_matches = 0
        for language, patterns in _LATIN_FUNCTION_WORDS.items():
            matches = sum(len(p.findall(lowered)) for p in patterns)
            if matches > best_matches:
                best_language, best_matches = language, matches
        return best_language

    def _confidence(self, length: int, script: str, language: str) -> float:
        confidence = 0.5
        if length >= FULL_CONFIDENCE_LENGTH:
            confidence += 0.3
        elif length >= 50:
            confidence += 0.2
        elif length >= 20:
            confidence += 0.1

        confidence += _SCRIPT_CONFIDENCE_BONUS.get(script, 0.0)

        # CJK scripts identify their language unambiguously
        if _SCRIPT_LANGUAGE.get(script) == language and script in ("hanzi", "kana", "hangul"):
            confidence += 0.1

        return min(1.0, max(0.0, confidence))


# Singleton instance
_detector: LanguageDetector | None = None


def get_language_detector() -> LanguageDetector:
    """Get or create the language detector singleton."""
    global _detector
    if _detector is None:
        _detector = LanguageDetector()
    return _detector


def detect_language(text: str) -> str:
    """Language code of a text."""
    return get_language_detector().detect(text).language


def quick_detect_language(text: str) -> str:
    return get_language_detector().quick_detect(text)
