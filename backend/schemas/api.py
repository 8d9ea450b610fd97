from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Verdict Schemas ---

class PatternResponse(BaseModel):
    id: str
    description: str
    severity: str

    model_config = {"from_attributes": True}


class VerdictResponse(BaseModel):
    is_dangerous: bool
    severity: str
    matched_patterns: list[PatternResponse] = []
    warnings: list[str] = []
    requires_confirmation: bool = False

    model_config = {"from_attributes": True}


# --- Suggestion Schemas ---

class SuggestionResponse(BaseModel):
    command: str
    description: str
    score: float
    source: str  # favorite | history | context
    usage_count: int = 0
    last_used: datetime | None = None

    model_config = {"from_attributes": True}


class SuggestionList(BaseModel):
    suggestions: list[SuggestionResponse]


# --- Interpret / Execute Schemas ---

class InterpretResponse(BaseModel):
    success: bool
    command: str = ""
    explanation: str = ""
    confidence: float = 0.0
    is_dangerous: bool = False
    severity: str = "none"
    requires_confirmation: bool = False
    warnings: list[str] = []
    verdict: VerdictResponse | None = None
    detected_types: list[str] = []
    failure_reason: str | None = None
    error: str | None = None

    model_config = {"from_attributes": True}


class ExecutionResponse(BaseModel):
    success: bool
    command: str = ""
    session_id: str = ""
    error: str | None = None

    model_config = {"from_attributes": True}
