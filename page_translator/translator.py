"""
Translation Module

Sends transcribed region text to an external translation service.
Supports a Sugoi-style HTTP translation server and the DeepL API.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from .errors import ConfigError, TranslationError
from .models import TextRegion

logger = logging.getLogger(__name__)


class TranslationBackend(ABC):
    """Abstract base class for translation backends."""

    def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """Translate a single text string."""
        return self.translate_batch([text], source_lang, target_lang)[0]

    @abstractmethod
    def translate_batch(
        self,
        texts: List[str],
        source_lang: str,
        target_lang: str
    ) -> List[str]:
        """Translate a batch of texts, preserving order."""
        pass

    def close(self) -> None:
        """Release network resources."""


class SugoiBackend(TranslationBackend):
    """
    Sugoi-style translation server.

    The server accepts {"content": [...], "message": "translate sentences"}
    and replies with a JSON list of translations in the same order.
    """

    def __init__(self, url: str = "http://localhost:14366", timeout: float = 60.0):
        self.url = url
        self.client = httpx.Client(timeout=httpx.Timeout(timeout))
        logger.info(f"Sugoi translation backend initialized ({url})")

    def translate_batch(
        self,
        texts: List[str],
        source_lang: str,
        target_lang: str
    ) -> List[str]:
        payload = {"content": list(texts), "message": "translate sentences"}
        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise TranslationError(f"Translation request to {self.url} failed: {e}") from e
        except ValueError as e:
            raise TranslationError(f"Translation server returned invalid JSON: {e}") from e

        if not isinstance(result, list) or len(result) != len(texts):
            raise TranslationError(
                f"Translation server returned {len(result) if isinstance(result, list) else 'no'} "
                f"results for {len(texts)} texts"
            )
        return [str(item) for item in result]

    def close(self) -> None:
        self.client.close()


class DeepLBackend(TranslationBackend):
    """DeepL API backend."""

    def __init__(self, api_key: str = None):
        """
        Initialize DeepL backend.

        Args:
            api_key: DeepL API key (if None, uses DEEPL_API_KEY env var)
        """
        self.api_key = api_key or os.environ.get("DEEPL_API_KEY")
        if not self.api_key:
            raise ConfigError("DeepL translation requires an API key (DEEPL_API_KEY)")

        import deepl
        self._deepl = deepl
        self.translator = deepl.Translator(self.api_key)
        logger.info("DeepL translator initialized")

    def translate_batch(
        self,
        texts: List[str],
        source_lang: str,
        target_lang: str
    ) -> List[str]:
        target = "EN-US" if target_lang.lower() == "en" else target_lang.upper()
        try:
            results = self.translator.translate_text(
                texts,
                source_lang=source_lang.upper() if source_lang else None,
                target_lang=target,
            )
        except self._deepl.DeepLException as e:
            raise TranslationError(f"DeepL API error: {e}") from e
        return [r.text for r in results]


class Translator:
    """
    Main translator class that coordinates translation operations.
    """

    def __init__(
        self,
        service: str = "sugoi",
        source_language: str = "ja",
        target_language: str = "en",
        url: str = "http://localhost:14366",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        batch_size: int = 50,
        backend: Optional[TranslationBackend] = None,
    ):
        """
        Initialize the translator.

        Args:
            service: 'sugoi' or 'deepl'
            source_language: Language of the transcribed text
            target_language: Language to translate into
            url: Endpoint of the Sugoi-style server
            api_key: API key for DeepL
            timeout: HTTP timeout in seconds
            batch_size: Texts sent per request
            backend: Pre-built backend (overrides service)
        """
        self.source_language = source_language
        self.target_language = target_language
        self.batch_size = max(1, batch_size)
        self.backend = backend or self._create_backend(service, url, api_key, timeout)

    @staticmethod
    def _create_backend(
        service: str,
        url: str,
        api_key: Optional[str],
        timeout: float,
    ) -> TranslationBackend:
        """Create the appropriate translation backend."""
        service_lower = service.lower()
        if service_lower == "sugoi":
            return SugoiBackend(url=url, timeout=timeout)
        if service_lower == "deepl":
            return DeepLBackend(api_key)
        raise ConfigError(f"Unknown translation service: {service}")

    def translate_regions(self, text_regions: List[TextRegion]) -> List[TextRegion]:
        """
        Translate every region that has source text.

        Regions without source text get an empty translation, so nothing
        is rendered for them.
        """
        pending = [r for r in text_regions if r.source_text]
        for region in text_regions:
            if not region.source_text:
                region.translated_text = ""

        logger.info(f"Translating {len(pending)} of {len(text_regions)} text regions...")

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            translations = self.backend.translate_batch(
                [r.source_text for r in batch],
                self.source_language,
                self.target_language,
            )
            if len(translations) != len(batch):
                raise TranslationError(
                    f"Got {len(translations)} translations for {len(batch)} texts"
                )
            for region, translated in zip(batch, translations):
                region.translated_text = " ".join(translated.split())

        return text_regions

    def close(self) -> None:
        self.backend.close()
