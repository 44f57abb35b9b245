from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


AnalysisMode = Literal["code-analysis", "document-qa", "education"]
MemoryType = Literal["file_analysis", "pattern", "dependency", "issue", "summary"]
Recommendation = Literal["none", "inject_memory", "summarize", "restart"]
Phase = Literal["initializing", "analyzing", "executing", "sub-llm", "finalizing"]
Role = Literal["user", "assistant", "system"]


class CompressionLevel(str, Enum):
    """How hard the adaptive compressor squeezes delegated results."""

    NONE = "none"
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"
    EMERGENCY = "emergency"


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionConfig(BaseModel):
    """
    Resolved per-session configuration.

    Built once by the orchestrator (see rlmscope.config.resolve_session_config)
    and never mutated while a session runs.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    root_model: str
    sub_model: str
    fallback_model: Optional[str] = None
    max_recursion_depth: int = Field(default=3, ge=0)
    max_turns: int = Field(default=10, ge=1)
    timeout_ms: int = Field(default=300_000, gt=0)
    max_sub_calls: int = Field(default=15, ge=0)
    mode: AnalysisMode = "code-analysis"


class AnalysisContext(BaseModel):
    """Path -> content mapping the scripts see as ``file_index``."""

    model_config = ConfigDict(extra="forbid")

    files: Dict[str, str]
    variables: Dict[str, Any] = Field(default_factory=dict)
    mode: AnalysisMode = "code-analysis"

    @property
    def paths(self) -> List[str]:
        return list(self.files.keys())

    @property
    def file_count(self) -> int:
        return len(self.files)


class Turn(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    turn: int = Field(ge=1)
    response: str
    code: Optional[str] = None
    execution_result: Optional[str] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    sub_call_count: int = 0


class MemoryEntry(BaseModel):
    """A durable finding retained across history compression."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    type: MemoryType
    content: str
    source: Optional[str] = None
    importance: int = Field(ge=1, le=10)
    turn: int = Field(default=0, ge=0)


class CompressedTurn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    turn: int
    summary: str
    findings: List[str] = Field(default_factory=list, max_length=3)
    had_code: bool = False
    had_error: bool = False


class ContextUsageMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tokens_used: int = 0
    max_tokens: int
    usage_percent: float = 0.0
    memory_bank_size: int = 0
    compressed_turns_count: int = 0


class RotIndicators(BaseModel):
    model_config = ConfigDict(extra="forbid")

    detected: bool = False
    confidence: int = Field(default=0, ge=0, le=100)
    indicators: List[str] = Field(default_factory=list)
    recommendation: Recommendation = "none"


class RefinementPassResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pass_number: int = Field(ge=1)
    quality_score: int = Field(ge=0, le=100)
    improvements: List[str] = Field(default_factory=list)
    issues_found: List[str] = Field(default_factory=list)
    should_continue: bool = False


class Progress(BaseModel):
    """Snapshot handed to the progress observer."""

    model_config = ConfigDict(extra="forbid")

    turn: int = 0
    sub_call_count: int = 0
    phase: Phase
    elapsed_ms: int = 0


class TokenSavings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    original_chars: int = 0
    compressed_chars: int = 0
    savings: int = Field(default=0, ge=0, le=100)


class RLMResult(BaseModel):
    """
    Terminal outcome of one session.

    success=True always carries an answer; success=False always carries an
    error (timeout, turn exhaustion, or an unrecoverable provider failure).
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    answer: Optional[str] = None
    turns: List[Turn] = Field(default_factory=list)
    execution_time_ms: int = 0
    sub_call_count: int = 0
    error: Optional[str] = None
    token_savings: Optional[TokenSavings] = None
    refinement: List[RefinementPassResult] = Field(default_factory=list)

    @model_validator(mode="after")
    def _outcome_has_payload(self) -> "RLMResult":
        if self.success and self.answer is None:
            raise ValueError("successful result requires an answer")
        if not self.success and not self.error:
            raise ValueError("failed result requires an error")
        return self


class ExecutorResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    output: str = ""
    error: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Role
    content: str


class GenerateOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    enable_web_grounding: bool = False


class TokenUsage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class GroundingMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    queries: List[str] = Field(default_factory=list)
    sources: List[Dict[str, Any]] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    usage: Optional[TokenUsage] = None
    grounding_metadata: Optional[GroundingMetadata] = None


@dataclass
class ParallelBatchResult:
    """Outcome of a delegated batch. Errors hold live exception objects."""

    results: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    total_time_ms: int = 0
    timings: Dict[str, int] = field(default_factory=dict)
