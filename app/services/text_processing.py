# app/services/text_processing.py
"""
食材文字前處理：
- clean_text：去頭尾空白、合併空白、智慧引號轉一般引號、& 轉 and、轉小寫
- tokenize：去標點（保留連字號）、切詞，濾掉停用詞 / 修飾詞 / 份量單位
- extract_potential_ingredients：再濾掉數字、2lb 之類的份量、單一字母
- extract_compound_ingredients：把 "olive oil"、"ground beef" 這類相鄰詞合併

全部都是純函式，不會拋錯；空字串或全是贅字時回傳空 list。
"""

from __future__ import annotations

import re
from typing import List, Sequence

_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s-]")
_HAS_LETTER_RE = re.compile(r"[a-zA-Z]")
_ONLY_SYMBOLS_RE = re.compile(r"^[^a-zA-Z0-9]+$")
_DIGITS_RE = re.compile(r"^\d+$")
_DIGITS_UNIT_RE = re.compile(r"^\d+[a-z]+$")
_SINGLE_LETTER_RE = re.compile(r"^[a-z]$")

_SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
}

# 冠詞、連接詞、代名詞、助動詞
STOP_WORDS = frozenset({
    "with", "and", "in", "on", "the", "a", "an", "or", "of", "for", "from",
    "to", "at", "by", "is", "was", "are", "were", "be", "been", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "may",
    "might", "can", "some", "any", "all", "no", "not", "also", "very", "so",
    "just", "only", "but", "then", "than", "as", "if", "when", "where", "how",
    "what", "who", "which", "why", "this", "that", "these", "those", "it",
    "its", "they", "them", "their", "we", "us", "our", "you", "your", "my",
    "me", "mine", "his", "her", "him", "plus", "into", "over",
})

# 口感、烹調方式、大小、顏色等描述詞（不代表特定食材）
MODIFIERS = frozenset({
    "spicy", "hot", "cold", "warm", "fresh", "dried", "frozen", "raw",
    "cooked", "grilled", "fried", "baked", "roasted", "steamed", "boiled",
    "sauteed", "crispy", "crunchy", "soft", "tender", "juicy", "sweet", "sour",
    "salty", "bitter", "mild", "strong", "light", "heavy", "thick", "thin",
    "creamy", "chunky", "smooth", "rough", "fine", "large", "small", "big",
    "little", "tiny", "huge", "organic", "natural", "artificial", "homemade",
    "store", "bought", "canned", "bottled", "packaged", "processed", "whole",
    "sliced", "diced", "chopped", "minced", "grated", "shredded", "mashed",
    "crushed", "powdered", "liquid", "solid", "extra", "added", "mixed",
    "pure", "red", "green", "yellow", "orange", "white", "ripe", "leftover",
})

# 份量單位
QUANTITY_WORDS = frozenset({
    "cup", "cups", "tablespoon", "tablespoons", "tbsp", "teaspoon",
    "teaspoons", "tsp", "ounce", "ounces", "oz", "pound", "pounds", "lb",
    "lbs", "gram", "grams", "g", "kilogram", "kilograms", "kg", "liter",
    "liters", "l", "milliliter", "milliliters", "ml", "gallon", "gallons",
    "quart", "quarts", "pint", "pints", "handful", "pinch", "pinches", "dash",
    "dashes", "splash", "drops", "piece", "pieces", "slice", "slices",
    "clove", "cloves", "bunch", "bunches", "head", "heads", "can", "cans",
    "jar", "jars", "bottle", "bottles", "package", "packages", "box", "boxes",
    "serving", "servings", "bowl", "plate",
})

_SAUCE_PREFIXES = {"tomato", "soy", "hot"}
_OIL_PREFIXES = {"olive", "vegetable", "coconut"}
_GROUND_MEATS = {"beef", "turkey", "chicken", "pork"}


def _collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _is_valid_token(token: str) -> bool:
    if not token:
        return False
    if not _HAS_LETTER_RE.search(token):
        return False
    if _ONLY_SYMBOLS_RE.match(token):
        return False
    return True


def is_compound_pair(first: str, second: str) -> bool:
    """兩個相鄰 token 是否可能組成一個複合食材名"""
    if second == "sauce" and first in _SAUCE_PREFIXES:
        return True
    if second == "oil" and first in _OIL_PREFIXES:
        return True
    if second == "cheese":
        return True
    if first == "ground" and second in _GROUND_MEATS:
        return True
    if (first, second) in {("black", "pepper"), ("garlic", "powder")}:
        return True
    # 通用規則：形容詞 + 名詞（兩邊都超過 3 個字元）
    return len(first) > 3 and len(second) > 3


class TextProcessor:

    def clean_text(self, text: str) -> str:
        if not text or not isinstance(text, str):
            return ""
        s = _collapse_ws(text)
        for smart, plain in _SMART_QUOTES.items():
            s = s.replace(smart, plain)
        s = s.replace("&amp;", " and ").replace("&", " and ")
        return _collapse_ws(s).lower()

    def tokenize(self, text: str) -> List[str]:
        if not text or not isinstance(text, str):
            return []
        s = _collapse_ws(_NON_WORD_RE.sub(" ", text.lower()))
        if not s:
            return []
        return [
            t for t in s.split(" ")
            if _is_valid_token(t)
            and t not in STOP_WORDS
            and t not in MODIFIERS
            and t not in QUANTITY_WORDS
        ]

    def extract_potential_ingredients(self, tokens: Sequence[str]) -> List[str]:
        out = []
        for t in tokens:
            if len(t) < 2:
                continue
            if _DIGITS_RE.match(t) or _DIGITS_UNIT_RE.match(t) or _SINGLE_LETTER_RE.match(t):
                continue
            # 呼叫端可能直接丟未經 tokenize 的 list，份量單位在這裡也要擋
            if t in QUANTITY_WORDS:
                continue
            out.append(t)
        return out

    def extract_compound_ingredients(self, tokens: Sequence[str]) -> List[str]:
        """
        相鄰兩詞若符合複合規則就合併成一個候選；每個 token 最多被用一次，
        沒被合併的原樣保留，順序不變。
        """
        out: List[str] = []
        i = 0
        while i < len(tokens):
            if i + 1 < len(tokens) and is_compound_pair(tokens[i], tokens[i + 1]):
                out.append(f"{tokens[i]} {tokens[i + 1]}")
                i += 2
            else:
                out.append(tokens[i])
                i += 1
        return out

    def candidates(self, text: str) -> List[str]:
        """
        一次跑完 tokenize → 過濾 → 複合詞合併。
        複合詞的單字也會補進來（"bell peppers" 之外也查 "peppers"），避免通用規則誤併時整句查不到。
        """
        tokens = self.extract_potential_ingredients(self.tokenize(text))
        compounds = self.extract_compound_ingredients(tokens)

        seen = set()
        out: List[str] = []
        for c in compounds:
            if c not in seen:
                seen.add(c)
                out.append(c)
        for c in compounds:
            for word in c.split(" "):
                if word not in seen:
                    seen.add(word)
                    out.append(word)
        return out
