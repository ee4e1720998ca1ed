# app/services/normalization.py
"""
食材正規化主流程（orchestrator）：

  clean → cache → tokenize → deterministic → (LLM fallback)
  → 依 ingredient_id 去重 → 排序（confidence ↓，同分 deterministic > fuzzy > llm）→ 寫入 cache
  → 門檻過濾 → 截斷 → analytics

cache 命中時跳過 tokenize ~ 寫入 cache，直接對快取的候選套用該次請求的門檻與筆數。

只會往外丟 NormalizationError；未預期的例外一律包成 INTERNAL_ERROR。
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from app.schemas.normalization import (
    METHOD_RANK,
    CanonicalIngredient,
    NormalizationResult,
    NormalizedMatch,
)
from app.services.analytics import NormalizationAnalytics, NormalizationEvent
from app.services.cache import TTLCache
from app.services.deterministic_matching import DeterministicMatcher, deduplicate_matches
from app.services.ingredient_store import IngredientStore
from app.services.llm_normalization import LLMMatcher, NullLLMMatcher
from app.services.text_processing import TextProcessor


class ErrorCode(str, Enum):
    EMPTY_INPUT = "EMPTY_INPUT"
    NO_INGREDIENTS = "NO_INGREDIENTS"
    INSUFFICIENT_CONFIDENCE = "INSUFFICIENT_CONFIDENCE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class NormalizationError(Exception):
    """業務邏輯錯誤：帶 machine-readable code 與人看得懂的訊息"""

    def __init__(self, message: str, code: ErrorCode, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "details": self.details}


def rank_matches(matches: Iterable[NormalizedMatch]) -> List[NormalizedMatch]:
    return sorted(matches, key=lambda m: (-m.confidence, METHOD_RANK[m.method]))


def find_unmatched_tokens(tokens: Sequence[str], matches: Sequence[NormalizedMatch]) -> List[str]:
    """token 與任何已比對名稱相等、互為子字串者，都算已比對到"""
    names = {m.name.lower() for m in matches}
    out = []
    for token in tokens:
        t = token.lower()
        if any(t == n or t in n or n in t for n in names):
            continue
        out.append(token)
    return out


@dataclass(frozen=True)
class CachedCandidates:
    """cache 存的是門檻過濾前、已去重排序的候選，命中時再依該次請求的選項後處理"""
    matches: Tuple[NormalizedMatch, ...]
    method: str


def _avg_confidence(matches: Sequence[NormalizedMatch]) -> float:
    return sum(m.confidence for m in matches) / len(matches) if matches else 0.0


class IngredientNormalizationService:
    def __init__(
        self,
        store: IngredientStore,
        *,
        text_processor: Optional[TextProcessor] = None,
        matcher: Optional[DeterministicMatcher] = None,
        llm_matcher: Optional[LLMMatcher] = None,
        cache: Optional[TTLCache[CachedCandidates]] = None,
        analytics: Optional[NormalizationAnalytics] = None,
        llm_context_limit: int = 200,
    ):
        self.store = store
        self.text_processor = text_processor or TextProcessor()
        self.matcher = matcher or DeterministicMatcher(store)
        self.llm_matcher: LLMMatcher = llm_matcher if llm_matcher is not None else NullLLMMatcher()
        self.cache: TTLCache[CachedCandidates] = cache if cache is not None else TTLCache()
        self.analytics = analytics if analytics is not None else NormalizationAnalytics()
        self.llm_context_limit = llm_context_limit

    async def normalize_ingredients(
        self,
        raw_text: str,
        *,
        user_id: Optional[str] = None,
        min_confidence: float = 0.5,
        max_results: int = 10,
    ) -> NormalizationResult:
        started = time.perf_counter()
        min_confidence = max(0.0, min(1.0, float(min_confidence)))
        max_results = max(1, int(max_results))
        cleaned = ""
        token_count = 0
        method = "deterministic"
        cache_hit = False

        try:
            # 1. 清理
            cleaned = self.text_processor.clean_text(raw_text)
            if not cleaned:
                raise NormalizationError(
                    "Input text is empty after preprocessing",
                    ErrorCode.EMPTY_INPUT,
                    f'Original text: "{raw_text}"',
                )

            # 2. cache（存的是過濾前的候選，min_confidence / max_results 每次重新套用）
            cache_key = self.cache.generate_key(cleaned)
            cached = self.cache.get(cache_key)
            if cached is not None:
                cache_hit = True
                method = cached.method
                ranked = list(cached.matches)
            else:
                # 3. tokenize
                tokens = self.text_processor.candidates(cleaned)
                token_count = len(tokens)
                if not tokens:
                    raise NormalizationError(
                        "No potential ingredients found in text",
                        ErrorCode.NO_INGREDIENTS,
                        f'Preprocessed text: "{cleaned}"',
                    )

                # 4. deterministic
                candidates = await self.matcher.find_matches(tokens)
                llm_degraded = False

                # 5. LLM fallback（只處理沒比對到的 token）
                if self.llm_matcher.enabled:
                    unmatched = find_unmatched_tokens(tokens, candidates)
                    if unmatched:
                        context = await self._canonical_context()
                        outcome = await self.llm_matcher.match(unmatched, context)
                        if not outcome.ok:
                            llm_degraded = True
                            logger.info("LLM fallback degraded: {}", outcome.error)
                        if outcome.matches:
                            method = "hybrid" if candidates else "llm"
                            candidates = [*candidates, *outcome.matches]

                ranked = rank_matches(deduplicate_matches(candidates))

                # 10. cache：沒有候選或 LLM 失敗時不寫入，避免把降級結果留 30 分鐘
                if ranked and not llm_degraded:
                    self.cache.set(cache_key, CachedCandidates(matches=tuple(ranked), method=method))

            # 6-9. 過濾、去重、排序、截斷
            final = self.post_process(ranked, min_confidence, max_results)
            if not final:
                raise NormalizationError(
                    "No ingredients could be matched with sufficient confidence",
                    ErrorCode.INSUFFICIENT_CONFIDENCE,
                    f"Min confidence: {min_confidence}, found {len(ranked)} candidates below threshold",
                )

            # 11. analytics
            self._record(user_id, cleaned, token_count, final, started, method, cache_hit=cache_hit)
            return NormalizationResult(matches=final, raw_text=cleaned)

        except NormalizationError as e:
            self._record(user_id, cleaned or (raw_text or ""), token_count, [], started, method, cache_hit=cache_hit)
            logger.info("Normalization failed [{}]: {}", e.code.value, e.message)
            raise
        except Exception as e:
            self._record(user_id, cleaned or (raw_text or ""), token_count, [], started, method, cache_hit=cache_hit)
            logger.exception("Unexpected normalization error: {}", e)
            raise NormalizationError(
                "Internal normalization service error",
                ErrorCode.INTERNAL_ERROR,
                str(e) or type(e).__name__,
            ) from e

    @staticmethod
    def post_process(
        matches: Iterable[NormalizedMatch], min_confidence: float, max_results: int
    ) -> List[NormalizedMatch]:
        kept = [m for m in matches if m.confidence >= min_confidence]
        return rank_matches(deduplicate_matches(kept))[:max_results]

    async def _canonical_context(self) -> List[CanonicalIngredient]:
        try:
            return await self.store.list_ingredients(self.llm_context_limit)
        except Exception as e:
            logger.warning("Failed to fetch ingredients for LLM context: {}", e)
            return []

    def _record(
        self,
        user_id: Optional[str],
        text: str,
        token_count: int,
        matches: Sequence[NormalizedMatch],
        started: float,
        method: str,
        *,
        cache_hit: bool,
    ) -> None:
        try:
            self.analytics.record(NormalizationEvent(
                user_id=user_id,
                raw_text=text,
                token_count=token_count,
                match_count=len(matches),
                avg_confidence=round(_avg_confidence(matches), 3),
                processing_time_ms=(time.perf_counter() - started) * 1000,
                method=method,
                cache_hit=cache_hit,
            ))
        except Exception as e:
            logger.warning("Failed to log normalization metrics: {}", e)

    def service_info(self) -> dict:
        return {
            "text_processor_ready": True,
            "deterministic_matcher_ready": True,
            "llm_service_enabled": self.llm_matcher.enabled,
            "llm_cache_stats": self.llm_matcher.cache_stats(),
        }

    def clear_caches(self) -> None:
        self.cache.clear()
        self.llm_matcher.clear_cache()

