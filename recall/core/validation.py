"""
Validation contracts for caller input and language model output.

Language model responses are untrusted input: they are parsed against a strict
schema and any violation raises ExtractionError so the caller can leave state
unchanged and retry later.
"""

import json
import re
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError, field_validator

from .errors import ExtractionError, InputError

T = TypeVar("T", bound=BaseModel)

TONES = ("positive", "neutral", "negative")

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


# Caller input

class TurnRequest(BaseModel):
    session_id: str
    user_id: str
    role: Literal["user", "assistant"]
    text: str

    @field_validator('session_id', 'user_id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('identifier cannot be empty')
        return v.strip()

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('text cannot be empty')
        return v


class SearchRequest(BaseModel):
    query: str
    top_k: int = 5
    min_score: Optional[float] = None

    @field_validator('top_k')
    @classmethod
    def top_k_positive(cls, v):
        if v < 1:
            raise ValueError('top_k must be >= 1')
        return v

    @field_validator('min_score')
    @classmethod
    def min_score_is_cosine(cls, v):
        if v is not None and not -1.0 <= v <= 1.0:
            raise ValueError('min_score must be between -1 and 1')
        return v


class IngestRequest(BaseModel):
    source_name: str
    size: int

    @field_validator('source_name')
    @classmethod
    def source_name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('source_name cannot be empty')
        return v.strip()

    @field_validator('size')
    @classmethod
    def must_have_content(cls, v):
        if v <= 0:
            raise ValueError('document is empty')
        return v


def validate_input(model: Type[T], **values) -> T:
    """Validate caller input, raising InputError with a readable reason."""
    try:
        return model(**values)
    except ValidationError as e:
        reasons = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InputError(reasons) from e


# Language model output

class _LLMContract(BaseModel):
    model_config = ConfigDict(extra='ignore')

    @field_validator('emotional_tone', mode='before', check_fields=False)
    @classmethod
    def normalise_tone(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class CompressionResult(_LLMContract):
    summary: str = Field(min_length=1)
    key_facts: List[str] = Field(default_factory=list)
    user_intent: Optional[str] = None
    emotional_tone: Literal["positive", "neutral", "negative"]
    importance_score: StrictInt = Field(ge=1, le=10)
    action_items: List[str] = Field(default_factory=list)

    @field_validator('summary')
    @classmethod
    def summary_not_blank(cls, v):
        if not v.strip():
            raise ValueError('summary cannot be blank')
        return v.strip()

    @field_validator('key_facts', 'action_items')
    @classmethod
    def drop_blank_items(cls, v):
        return [item.strip() for item in v if item.strip()]


class SuperSummaryResult(_LLMContract):
    summary: str = Field(min_length=1)
    key_points: List[str] = Field(default_factory=list)
    emotional_tone: Literal["positive", "neutral", "negative"] = "neutral"
    importance_score: StrictInt = Field(default=10, ge=1, le=10)

    @field_validator('summary')
    @classmethod
    def summary_not_blank(cls, v):
        if not v.strip():
            raise ValueError('summary cannot be blank')
        return v.strip()


class ProfileResult(_LLMContract):
    personality_summary: str
    communication_style: str
    interests: List[str] = Field(default_factory=list)
    key_topics: List[str] = Field(default_factory=list)
    emotional_baseline: Literal["positive", "neutral", "negative"] = "neutral"

    @field_validator('interests', 'key_topics', mode='before')
    @classmethod
    def split_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in re.split(r"[,，、]", v) if item.strip()]
        return v

    @field_validator('emotional_baseline', mode='before')
    @classmethod
    def normalise_baseline(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class AssistantMemoryItem(BaseModel):
    type: Literal["commitment", "advice", "plan", "info"]
    content: str = Field(min_length=1)


class AssistantMemoryResult(_LLMContract):
    has_important_content: StrictBool
    items: List[AssistantMemoryItem] = Field(default_factory=list)


def parse_llm_json(text: str, model: Type[T]) -> T:
    """Parse a language model reply into `model`; raises ExtractionError on any violation."""
    if not text or not text.strip():
        raise ExtractionError("empty response from language model")

    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionError("response JSON must be an object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ExtractionError(f"response violates {model.__name__} contract: {e.error_count()} error(s)") from e
