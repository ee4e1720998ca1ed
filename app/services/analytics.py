# app/services/analytics.py
"""
正規化事件統計（in-memory，最多保留最近 10k 筆）。
record 是 best-effort：任何錯誤都吞掉並記 warning，不影響主要請求。
"""

from __future__ import annotations

import re
import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, List, Optional

from loguru import logger

_DIGIT_RE = re.compile(r"[0-9]")
_NUM_RE = re.compile(r"[0-9]+")
_STOP_RE = re.compile(r"\b(the|a|an|with|and|or|in|on|of)\b")

DAY_SEC = 24 * 60 * 60


@dataclass(frozen=True)
class NormalizationEvent:
    user_id: Optional[str]
    raw_text: str
    token_count: int
    match_count: int
    avg_confidence: float
    processing_time_ms: float
    method: str = "deterministic"   # deterministic | llm | hybrid
    cache_hit: bool = False
    timestamp: float = field(default_factory=time.time)


def sanitize_text(text: str) -> str:
    # 數字可能是電話 / 卡號，統一遮成 X
    return _DIGIT_RE.sub("X", text or "")


def extract_pattern(text: str) -> str:
    return _STOP_RE.sub("STOP", _NUM_RE.sub("NUM", (text or "").lower())).strip()


class NormalizationAnalytics:
    def __init__(self, max_events: int = 10_000):
        self._events: Deque[NormalizationEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record(self, event: NormalizationEvent) -> None:
        try:
            stored = NormalizationEvent(**{**asdict(event), "raw_text": sanitize_text(event.raw_text)})
            with self._lock:
                self._events.append(stored)
            logger.debug(
                "Normalization event: len={} tokens={} matches={} avg_conf={:.3f} ms={:.1f} method={} cache_hit={}",
                len(event.raw_text), event.token_count, event.match_count, event.avg_confidence,
                event.processing_time_ms, event.method, event.cache_hit,
            )
        except Exception as e:
            logger.warning("Failed to record normalization event: {}", e)

    def _recent(self, window_seconds: float) -> List[NormalizationEvent]:
        cutoff = time.time() - window_seconds
        with self._lock:
            return [e for e in self._events if e.timestamp > cutoff]

    def failure_rate(self, window_seconds: float = DAY_SEC) -> float:
        recent = self._recent(window_seconds)
        if not recent:
            return 0.0
        return sum(1 for e in recent if e.match_count == 0) / len(recent)

    def performance_stats(self, window_seconds: float = DAY_SEC) -> Dict[str, object]:
        recent = self._recent(window_seconds)
        if not recent:
            return {
                "total_requests": 0,
                "avg_processing_time_ms": 0.0,
                "avg_confidence": 0.0,
                "cache_hit_rate": 0.0,
                "method_distribution": {},
                "failure_rate": 0.0,
            }

        successes = [e for e in recent if e.match_count > 0]
        return {
            "total_requests": len(recent),
            "avg_processing_time_ms": sum(e.processing_time_ms for e in recent) / len(recent),
            "avg_confidence": (sum(e.avg_confidence for e in successes) / len(successes)) if successes else 0.0,
            "cache_hit_rate": sum(1 for e in recent if e.cache_hit) / len(recent),
            "method_distribution": dict(Counter(e.method for e in recent)),
            "failure_rate": (len(recent) - len(successes)) / len(recent),
        }

    def failure_patterns(self, limit: int = 10) -> List[Dict[str, object]]:
        with self._lock:
            failures = [e for e in self._events if e.match_count == 0]
        counts = Counter(extract_pattern(e.raw_text) for e in failures)
        return [{"pattern": p, "count": c} for p, c in counts.most_common(limit)]

    def export_events(self, limit: int = 1000) -> List[Dict[str, object]]:
        with self._lock:
            events = list(self._events)[-limit:] if limit > 0 else []
        return [asdict(e) for e in events]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
