# app/services/deterministic_matching.py
"""
不靠 AI 的比對層，每個 token 依序嘗試：
  1. exact：store.find_exact 命中 → confidence=1.0, method=deterministic
  2. similarity：store.find_similar（pg_trgm）→ confidence=相似度, method=fuzzy
  3. fallback：similarity 不可用或出錯時，改用 find_containing 子字串搜尋，
     以 Levenshtein 相似度打分，低於門檻的丟掉

單一 token 的 store 錯誤只記 warning，不影響其他 token。
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from loguru import logger

from app.schemas.normalization import METHOD_RANK, CanonicalIngredient, MatchMethod, NormalizedMatch
from app.services.ingredient_store import IngredientStore, SimilarityUnavailable

SUBSTRING_BOOST = 0.2


def levenshtein_distance(a: str, b: str) -> int:
    """標準 DP 編輯距離（插入 / 刪除 / 替換成本皆為 1）"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur[j] = min(
                cur[j - 1] + 1,      # insertion
                prev[j] + 1,         # deletion
                prev[j - 1] + cost,  # substitution
            )
        prev = cur
    return prev[-1]


def similarity(a: str, b: str) -> float:
    """
    1 - distance / max_len，一方包含另一方時 +0.2（上限 1.0）。
    對稱：similarity(a, b) == similarity(b, a)
    """
    s1, s2 = a.lower(), b.lower()
    if s1 == s2:
        return 1.0
    max_len = max(len(s1), len(s2))
    score = max(0.0, 1.0 - levenshtein_distance(s1, s2) / max_len)
    if s1 in s2 or s2 in s1:
        score = min(1.0, score + SUBSTRING_BOOST)
    return score


def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, float(v)))


def deduplicate_matches(matches: Iterable[NormalizedMatch]) -> List[NormalizedMatch]:
    """
    同一個 ingredient_id 只留 confidence 最高者（同分時保留偏好較高的 method），
    回傳依 confidence 由高到低排序。
    """
    best: Dict[int, NormalizedMatch] = {}
    for m in matches:
        cur = best.get(m.ingredient_id)
        if cur is None or m.confidence > cur.confidence or (
            m.confidence == cur.confidence and METHOD_RANK[m.method] < METHOD_RANK[cur.method]
        ):
            best[m.ingredient_id] = m
    return sorted(best.values(), key=lambda m: -m.confidence)


def _to_match(ing: CanonicalIngredient, confidence: float, method: MatchMethod) -> NormalizedMatch:
    return NormalizedMatch(
        ingredient_id=ing.id,
        name=ing.name,
        confidence=_clamp(confidence),
        method=method,
    )


class DeterministicMatcher:
    def __init__(
        self,
        store: IngredientStore,
        similarity_threshold: float = 0.6,
        max_similar: int = 3,
        fallback_limit: int = 5,
    ):
        self.store = store
        self.similarity_threshold = similarity_threshold
        self.max_similar = max_similar
        self.fallback_limit = fallback_limit

    async def find_matches(self, tokens: Iterable[str]) -> List[NormalizedMatch]:
        matches: List[NormalizedMatch] = []
        for token in tokens:
            try:
                exact = await self.find_exact_match(token)
                if exact is not None:
                    matches.append(exact)
                    continue
                matches.extend(await self.find_fuzzy_matches(token))
            except Exception as e:
                # 單一 token 失敗不中斷整批
                logger.warning("Error matching token {!r}: {}", token, e)
        return deduplicate_matches(matches)

    async def find_exact_match(self, token: str) -> NormalizedMatch | None:
        ing = await self.store.find_exact(token.lower())
        if ing is None:
            return None
        return _to_match(ing, 1.0, MatchMethod.DETERMINISTIC)

    async def find_fuzzy_matches(self, token: str) -> List[NormalizedMatch]:
        try:
            rows = await self.store.find_similar(token, self.similarity_threshold, self.max_similar)
        except SimilarityUnavailable as e:
            logger.debug("Similarity search unavailable for {!r}, using substring fallback: {}", token, e)
            return await self.fallback_text_search(token)
        except Exception as e:
            logger.warning("Fuzzy search error for {!r}: {}", token, e)
            return await self.fallback_text_search(token)

        return [_to_match(ing, score, MatchMethod.FUZZY) for ing, score in rows]

    async def fallback_text_search(self, token: str) -> List[NormalizedMatch]:
        try:
            rows = await self.store.find_containing(token, self.fallback_limit)
        except Exception as e:
            logger.warning("Fallback text search failed for {!r}: {}", token, e)
            return []

        scored = [_to_match(ing, similarity(token, ing.name), MatchMethod.FUZZY) for ing in rows]
        kept = [m for m in scored if m.confidence >= self.similarity_threshold]
        kept.sort(key=lambda m: -m.confidence)
        return kept[: self.max_similar]
