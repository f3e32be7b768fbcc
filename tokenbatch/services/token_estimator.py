"""
TokenEstimator - Approximate, repeatable token counts for source files.

Splits content into character categories (comments, strings, keywords,
symbols, identifiers), weighs each with a per-language table, and blends
the weighted sum with a plain character-ratio estimate to damp outliers.
"""

import asyncio
import math
from typing import Optional, Sequence

from tokenbatch.config import Settings, settings as default_settings
from tokenbatch.errors import ConfigurationError, ErrorCode, error_info
from tokenbatch.models.token import FileInput, Language, TokenBreakdown, TokenEstimate
from tokenbatch.services import language_rules as rules
from tokenbatch.utils.cache import EstimateCache, content_key
from tokenbatch.utils.logger import get_logger

logger = get_logger(__name__)


BASE_CONFIDENCE = 0.8
MODELED_LANGUAGE_BONUS = 0.15
TYPICAL_SIZE_BONUS = 0.05
TYPICAL_SIZE_RANGE = (100, 50_000)


class TokenEstimator:
    """
    Estimates token cost per file.

    A cache may be passed in to share estimates between components;
    otherwise the estimator owns a private one sized from settings.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        cache: Optional[EstimateCache] = None,
    ):
        self.settings = config or default_settings
        self.blend_ratio = self.settings.blend_ratio
        self.safety_buffer = self.settings.token_safety_buffer
        self.batch_size = self.settings.estimate_batch_size
        self.model_limits = dict(self.settings.model_token_limits)
        self.model_limits.setdefault("default", 100_000)
        self.weights = self._build_weight_tables(self.settings)
        self.cache = cache if cache is not None else EstimateCache(
            max_entries=self.settings.cache_max_entries,
            enabled=self.settings.cache_enabled,
        )

    @staticmethod
    def _build_weight_tables(config: Settings) -> dict[Language, dict[str, float]]:
        tables = {language: dict(weights) for language, weights in rules.LANGUAGE_WEIGHTS.items()}
        for name, overrides in config.language_weights.items():
            language = rules.detect_language("", name)
            if language is Language.DEFAULT and name.strip().lower() != Language.DEFAULT.value:
                raise ConfigurationError(f"Unknown language in weight overrides: {name}", language=name)
            unknown = set(overrides) - set(rules.WEIGHT_KEYS)
            if unknown:
                raise ConfigurationError(
                    f"Unknown weight keys for {name}: {sorted(unknown)}", language=name
                )
            if any(value < 0 for value in overrides.values()):
                raise ConfigurationError(f"Negative weight for {name}", language=name)
            tables[language].update(overrides)
        return tables

    # ── Public API ────────────────────────────────────────────────

    def estimate(
        self,
        path: str,
        content: Optional[str],
        language_hint: Optional[str] = None,
    ) -> TokenEstimate:
        """
        Estimate tokens for one file.

        Never raises: absent or unreadable content produces an error
        estimate with zero tokens and zero confidence.
        """
        try:
            if content is None:
                return self._error_estimate(path, "Content unavailable")
            if isinstance(content, bytes):
                content = content.decode("utf-8")
            if not isinstance(content, str):
                return self._error_estimate(path, f"Unsupported content type: {type(content).__name__}")

            language = rules.detect_language(path, language_hint)
            key = content_key(path, content, language.value)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("estimate_cache_hit", path=path, language=language.value)
                return cached.model_copy(update={"from_cache": True})

            estimate = self._compute(path, content, language, key)
            self.cache.put(key, estimate)
            return estimate
        except Exception as e:
            logger.warning("estimate_failed", path=path, error=str(e))
            return self._error_estimate(path, str(e) or e.__class__.__name__)

    async def estimate_batch(self, files: Sequence[FileInput]) -> list[TokenEstimate]:
        """
        Estimate many files concurrently in fixed-size groups.

        Returns one estimate per input, in input order. A failing item
        becomes an error estimate and never cancels its siblings.
        """
        logger.info("estimate_batch_started", files=len(files), group_size=self.batch_size)
        results: list[TokenEstimate] = []

        for start in range(0, len(files), self.batch_size):
            group = files[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *[
                    asyncio.to_thread(self.estimate, item.path, item.content, item.language_hint)
                    for item in group
                ],
                return_exceptions=True,
            )
            for item, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning("estimate_batch_item_failed", path=item.path, error=str(outcome))
                    results.append(self._error_estimate(item.path, str(outcome) or "Unknown batch error"))
                else:
                    results.append(outcome)

        failed = sum(1 for r in results if not r.success)
        logger.info("estimate_batch_complete", files=len(results), failed=failed)
        return results

    def estimate_text(self, text: str, language: Language) -> int:
        """Uncached blended estimate for a fragment (used while chunking)."""
        return self._blend(text, language)[0]

    def exceeds_limit(self, tokens: int, model: str = "default") -> bool:
        """True when tokens use more than 80% of the model's context."""
        limit = self.model_limits.get(model, self.model_limits["default"])
        return tokens > limit * 0.8

    def chunks_needed(self, tokens: int, model: str = "default") -> int:
        """Chunks required to stay within 60% of the model's context each."""
        limit = self.model_limits.get(model, self.model_limits["default"])
        return max(1, math.ceil(tokens / (limit * 0.6)))

    def cache_stats(self) -> dict:
        return self.cache.stats

    def clear_cache(self) -> None:
        self.cache.clear()

    # ── Internal ──────────────────────────────────────────────────

    def _compute(self, path: str, content: str, language: Language, key: str) -> TokenEstimate:
        total, ratio_tokens, breakdown = self._blend(content, language)
        return TokenEstimate(
            path=path,
            total_tokens=total,
            estimated_tokens=ratio_tokens,
            safe_token_count=math.ceil(total * (1 + self.safety_buffer)),
            breakdown=breakdown,
            confidence=self._confidence(content, language),
            language=language,
            source_size=len(content),
            cache_key=key,
        )

    def _blend(self, content: str, language: Language) -> tuple[int, int, TokenBreakdown]:
        weights = self.weights.get(language, self.weights[Language.DEFAULT])
        counts = self._count_categories(content, language)

        tokens = {
            "comments": math.ceil(counts["comments"] * weights["comment"]),
            "strings": math.ceil(counts["strings"] * weights["string"]),
            "keywords": math.ceil(counts["keywords"] * weights["keyword"]),
            "symbols": math.ceil(counts["symbols"] * weights["symbol"]),
            "identifiers": math.ceil(counts["identifiers"] * weights["identifier"]),
        }
        weighted = sum(tokens.values())
        ratio_tokens = math.ceil(len(content) * weights["token_ratio"])
        tokens["base"] = ratio_tokens

        total = math.ceil(weighted * self.blend_ratio + ratio_tokens * (1 - self.blend_ratio))
        breakdown = TokenBreakdown(
            total_chars=len(content),
            lines=content.count("\n") + 1 if content else 0,
            tokens=tokens,
            **counts,
        )
        return max(total, 0), ratio_tokens, breakdown

    @staticmethod
    def _count_categories(content: str, language: Language) -> dict[str, int]:
        # Each pass scans the full text independently; overlapping spans are
        # counted more than once.
        comments = sum(
            len(m.group(0))
            for pattern in rules.lookup(rules.COMMENT_PATTERNS, language)
            for m in pattern.finditer(content)
        )
        strings = sum(
            len(m.group(0))
            for pattern in rules.lookup(rules.STRING_PATTERNS, language)
            for m in pattern.finditer(content)
        )
        keywords = sum(
            len(pattern.findall(content)) * len(word)
            for word, pattern in rules.lookup(rules.KEYWORD_PATTERNS, language)
        )
        symbols = len(rules.SYMBOL_PATTERN.findall(content))

        stripped = content
        for pattern in rules.IDENTIFIER_STRIP_PATTERNS:
            stripped = pattern.sub("", stripped)
        identifiers = sum(len(m) for m in rules.IDENTIFIER_PATTERN.findall(stripped))
        whitespace = len(rules.WHITESPACE_PATTERN.findall(content))

        return {
            "comments": comments,
            "strings": strings,
            "keywords": keywords,
            "symbols": symbols,
            "identifiers": identifiers,
            "whitespace": whitespace,
        }

    @staticmethod
    def _confidence(content: str, language: Language) -> float:
        confidence = BASE_CONFIDENCE
        if rules.is_modeled(language):
            confidence += MODELED_LANGUAGE_BONUS
        low, high = TYPICAL_SIZE_RANGE
        if low < len(content) < high:
            confidence += TYPICAL_SIZE_BONUS
        return min(confidence, 1.0)

    @staticmethod
    def _error_estimate(path: str, message: str) -> TokenEstimate:
        return TokenEstimate(
            path=path,
            total_tokens=0,
            confidence=0.0,
            error=error_info(ErrorCode.ESTIMATION_ERROR, message, path=path),
        )
