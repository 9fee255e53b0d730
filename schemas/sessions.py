from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------- Requests ----------


class StartSessionRequest(BaseModel):
    assessment_id: str = Field(min_length=1)
    access_code: Optional[str] = None


class AnswerSubmit(BaseModel):
    question_id: str = Field(min_length=1)
    selected_index: int = Field(ge=0)
    time_spent_seconds: int = Field(default=0, ge=0)
    # currently displayed countdown; only ever lowers the stored snapshot
    time_remaining_seconds: Optional[int] = Field(default=None, ge=0)


class CompleteRequest(BaseModel):
    reason: Literal["manual", "timeout"] = "manual"
    time_remaining_seconds: Optional[int] = Field(default=None, ge=0)


class ViolationReport(BaseModel):
    type: Literal["tab_hidden", "fullscreen_exit"]
    timestamp: Optional[datetime] = None


# ---------- Responses ----------


class ViolationEntry(BaseModel):
    timestamp: str
    type: str


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    assessment_id: str
    user_id: str
    status: str
    question_order: List[str]
    time_remaining_seconds: int
    tab_switch_count: int
    tab_switch_log: List[ViolationEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    passed: Optional[bool] = None


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    session_id: str
    question_id: str
    selected_index: int
    answered_at: datetime
    time_spent_seconds: int


class QuestionOut(BaseModel):
    question_id: str
    stem: str
    options: List[str]


class ResumeOut(BaseModel):
    session: SessionOut
    questions: List[QuestionOut]
    answers: Dict[str, AnswerOut]


class CompletionOut(BaseModel):
    session_id: str
    status: str
    score: int
    passed: bool
    correct: int
    total: int
    completed_at: datetime
    time_remaining_seconds: int


class ReviewItem(BaseModel):
    question_id: str
    stem: str
    options: List[str]
    selected_index: Optional[int] = None
    time_spent_seconds: Optional[int] = None
    # present only when the assessment allows review
    is_correct: Optional[bool] = None
    correct_index: Optional[int] = None
    explanation: Optional[str] = None


class SessionResultsOut(BaseModel):
    session: SessionOut
    allow_review: bool
    items: List[ReviewItem]


class PercentileOut(BaseModel):
    percentile: int
    rank: int
    total_sessions: int


class ViolationsOut(BaseModel):
    session_id: str
    tab_switch_count: int
    tab_switch_log: List[ViolationEntry]


class ViolationAck(BaseModel):
    recorded: bool
