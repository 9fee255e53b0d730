from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class TopPerformer(BaseModel):
    user_id: str
    score: int
    completed_at: Optional[datetime] = None


class TabSwitchPoint(BaseModel):
    tab_switches: int
    score: int


class TrendPoint(BaseModel):
    attempt: int
    avg_score: int


class AnalyticsSummary(BaseModel):
    score_distribution: List[int]  # 10 buckets: [0-9, 10-19, ..., 90-100]
    completion_rate: int
    avg_time_minutes: Optional[float] = None
    median_score: Optional[float] = None
    total_started: int
    total_completed: int
    top_performers: List[TopPerformer] = Field(default_factory=list)
    tab_switch_correlation: List[TabSwitchPoint] = Field(default_factory=list)
    attempts_by_hour: List[int]  # 24 buckets (0-23), local hour
    score_trend: List[TrendPoint] = Field(default_factory=list)


class QuestionStats(BaseModel):
    question_id: str
    stem: str
    total_attempts: int
    correct_count: int
    percent_correct: int
    avg_time_seconds: Optional[int] = None
    discrimination_index: Optional[float] = None


class QuestionAnalytics(BaseModel):
    questions: List[QuestionStats]


class HeatmapQuestion(BaseModel):
    question_index: int
    question_id: str
    stem: str
    violation_count: int


class ViolationHeatmap(BaseModel):
    questions: List[HeatmapQuestion]
    total_violations: int
    flagged_session_count: int
    # dwell time stands in for "question on screen"; counts are estimates
    approximate: bool = True


class ProgressionPoint(BaseModel):
    session_id: str
    assessment_id: str
    assessment_title: str
    date: Optional[datetime] = None
    score: int
    passed: bool


class ActiveSession(BaseModel):
    session_id: str
    user_id: str
    started_at: Optional[datetime] = None
    time_remaining_seconds: int
    questions_answered: int
    total_questions: int
    tab_switch_count: int


class ResultRow(BaseModel):
    session_id: str
    user_id: str
    status: str
    score: Optional[int] = None
    passed: Optional[bool] = None
    tab_switch_count: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ResultStats(BaseModel):
    avg_score: int
    pass_rate: int
    total_attempts: int


class AssessmentResults(BaseModel):
    sessions: List[ResultRow]
    stats: ResultStats
