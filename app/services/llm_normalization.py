# app/services/llm_normalization.py
"""
LLM fallback：處理 deterministic 比對不到的 token。

這一層是可選的能力：
- NullLLMMatcher：未啟用 / 未設定金鑰時使用，永遠回空結果
- LiveLLMMatcher：呼叫 OpenAI 相容的 chat-completions 端點

任何錯誤（網路、逾時、重試用完、JSON 解析失敗）都只會變成 LLMOutcome(error=...)，
不會往上丟讓整個正規化失敗。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from app.schemas.normalization import CanonicalIngredient, MatchMethod, NormalizedMatch
from app.services.cache import TTLCache
from app.services.retry import RetryPolicy, retry_async

SYSTEM_PROMPT = (
    "You are a food ingredient matching expert. Always respond with valid JSON. "
    "Be conservative with matches - only match when confident."
)

MIN_LLM_CONFIDENCE = 0.5
MAX_LLM_CONFIDENCE = 1.0


class LLMServiceError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class LLMOutcome:
    matches: List[NormalizedMatch] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatCompletionClient:
    """最小化的 chat-completions 客戶端（OpenAI / OpenRouter 格式）"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        # 測試時注入 httpx.MockTransport
        self._transport = transport

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.1,
        max_tokens: int = 300,
        structured_output: bool = True,
    ) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if structured_output:
            body["response_format"] = {"type": "json_object"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
            )

        if response.status_code >= 400:
            raise LLMServiceError(
                f"LLM API error: {response.status_code} - {response.reason_phrase}",
                status_code=response.status_code,
            )

        data = response.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""


def build_prompt(tokens: Sequence[str], names: Sequence[str]) -> str:
    return f"""You are a food ingredient matching expert. Match the following ingredient tokens to the closest ingredients from the provided canonical list.

TOKENS TO MATCH: {", ".join(tokens)}

CANONICAL INGREDIENTS: {", ".join(names)}

RULES:
1. Only match tokens that clearly represent food ingredients
2. Return exact matches from the canonical list only
3. Assign confidence scores from 0.5 to 1.0
4. If no good match exists, don't force a match
5. Consider plural/singular variations and common abbreviations

FORMAT YOUR RESPONSE AS JSON:
{{
  "matches": [
    {{
      "token": "original_token",
      "ingredient": "exact_canonical_name",
      "confidence": 0.85
    }}
  ]
}}"""


def parse_llm_response(content: str, canonical: Sequence[CanonicalIngredient]) -> List[NormalizedMatch]:
    """
    解析 LLM 回覆；不在 canonical 清單內的名稱一律丟掉，confidence 夾到 [0.5, 1.0]。
    JSON 格式錯誤會丟 ValueError（json.JSONDecodeError）。
    """
    by_name = {c.name.lower(): c for c in canonical}
    parsed = json.loads(content)
    raw = parsed.get("matches") if isinstance(parsed, dict) else None
    if not isinstance(raw, list):
        return []

    out: List[NormalizedMatch] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = item.get("ingredient")
        conf = item.get("confidence")
        if not isinstance(name, str) or not name:
            continue
        if isinstance(conf, bool) or not isinstance(conf, (int, float)):
            continue
        ing = by_name.get(name.strip().lower())
        if ing is None:
            continue
        out.append(NormalizedMatch(
            ingredient_id=ing.id,
            name=ing.name,
            confidence=max(MIN_LLM_CONFIDENCE, min(MAX_LLM_CONFIDENCE, float(conf))),
            method=MatchMethod.LLM,
        ))
    return out


class LLMMatcher(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def match(
        self, unmatched_tokens: Sequence[str], canonical: Sequence[CanonicalIngredient]
    ) -> LLMOutcome: ...

    def cache_stats(self) -> Optional[dict]: ...

    def clear_cache(self) -> None: ...

    def cleanup_cache(self) -> int: ...


class NullLLMMatcher:
    @property
    def enabled(self) -> bool:
        return False

    async def match(self, unmatched_tokens, canonical) -> LLMOutcome:
        return LLMOutcome()

    def cache_stats(self) -> Optional[dict]:
        return None

    def clear_cache(self) -> None:
        pass

    def cleanup_cache(self) -> int:
        return 0


class LiveLLMMatcher:
    def __init__(
        self,
        client: ChatCompletionClient,
        cache: Optional[TTLCache[List[NormalizedMatch]]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        context_limit: int = 200,
    ):
        self.client = client
        self.cache = cache if cache is not None else TTLCache(max_size=1000, default_ttl=3600.0, evict_oldest=True, key_prefix="llm:")
        self.retry_policy = retry_policy or RetryPolicy()
        self.context_limit = context_limit

    @property
    def enabled(self) -> bool:
        return True

    @staticmethod
    def cache_key(tokens: Sequence[str]) -> str:
        return "llm:" + "|".join(sorted(tokens))

    async def match(
        self, unmatched_tokens: Sequence[str], canonical: Sequence[CanonicalIngredient]
    ) -> LLMOutcome:
        if not unmatched_tokens:
            return LLMOutcome()

        key = self.cache_key(unmatched_tokens)
        cached = self.cache.get(key)
        if cached is not None:
            return LLMOutcome(matches=list(cached))

        # 上下文只送前 N 筆，超過就截斷
        context = list(canonical)[: self.context_limit]
        prompt = build_prompt(unmatched_tokens, [c.name for c in context])

        try:
            content = await retry_async(
                lambda: self.client.complete(prompt, temperature=0.1, max_tokens=300, structured_output=True),
                self.retry_policy,
                label="LLM normalization call",
            )
            matches = parse_llm_response(content, context)
        except Exception as e:
            logger.warning("LLM normalization failed, returning empty results: {}", e)
            return LLMOutcome(error=str(e) or type(e).__name__)

        self.cache.set(key, matches)
        return LLMOutcome(matches=matches)

    def cache_stats(self) -> Optional[dict]:
        return self.cache.get_stats().as_dict()

    def clear_cache(self) -> None:
        self.cache.clear()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup()


def build_llm_matcher(settings) -> LLMMatcher:
    """依設定決定要用哪個實作；啟用但缺 key/URL 時降級為 no-op"""
    if not settings.ENABLE_LLM_NORMALIZATION:
        return NullLLMMatcher()
    if not settings.LLM_API_KEY or not settings.LLM_API_URL:
        logger.warning("LLM normalization enabled but missing API configuration; disabling")
        return NullLLMMatcher()

    client = ChatCompletionClient(
        api_url=settings.LLM_API_URL,
        api_key=settings.LLM_API_KEY,
        model=settings.LLM_MODEL,
        timeout=settings.LLM_TIMEOUT_SEC,
    )
    cache: TTLCache[List[NormalizedMatch]] = TTLCache(
        max_size=settings.LLM_CACHE_SIZE,
        default_ttl=settings.LLM_CACHE_TTL_SEC,
        evict_oldest=True,
        key_prefix="llm:",
    )
    policy = RetryPolicy(
        max_attempts=settings.LLM_MAX_ATTEMPTS,
        base_delay=settings.LLM_BACKOFF_BASE_SEC,
    )
    return LiveLLMMatcher(client, cache=cache, retry_policy=policy, context_limit=settings.LLM_CONTEXT_LIMIT)
