# app/schemas/normalization.py
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchMethod(str, Enum):
    DETERMINISTIC = "deterministic"
    FUZZY = "fuzzy"
    LLM = "llm"


# 同分時的排序偏好：deterministic > fuzzy > llm（數字越小越優先）
METHOD_RANK = {
    MatchMethod.DETERMINISTIC: 0,
    MatchMethod.FUZZY: 1,
    MatchMethod.LLM: 2,
}


class CanonicalIngredient(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str


class NormalizedMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    ingredient_id: int
    name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    method: MatchMethod


class NormalizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    matches: List[NormalizedMatch]
    raw_text: str


class NormalizeRequest(BaseModel):
    raw_text: str = Field(..., min_length=1, max_length=100, description="使用者輸入的食材文字")
    min_confidence: float = Field(0.5, ge=0.0, le=1.0)
    max_results: int = Field(10, ge=1, le=50)

    @field_validator("raw_text")
    @classmethod
    def _must_have_letter(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("Raw text cannot be only whitespace")
        if not any(ch.isalpha() for ch in s):
            raise ValueError("Raw text must contain at least one letter")
        return s


class MaintenanceRequest(BaseModel):
    action: str
