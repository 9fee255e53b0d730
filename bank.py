# assessment catalog: the read-only side of content authoring

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

_BASE = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR = _BASE / "data" / "assessments"


def _data_dir() -> Path:
    return Path(os.getenv("ASSESSMENT_DATA_DIR") or _DEFAULT_DATA_DIR)


class QuestionModel(BaseModel):
    id: str
    stem: str
    options: List[str] = Field(min_length=2)
    correct_index: int = Field(ge=0)
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _correct_index_in_range(self) -> "QuestionModel":
        if self.correct_index >= len(self.options):
            raise ValueError("correct_index out of range")
        return self


class AssessmentConfig(BaseModel):
    id: str
    title: str = ""
    status: str = "published"
    time_limit_minutes: int = Field(gt=0)
    pass_score: int = Field(ge=0, le=100)
    question_count: int = Field(gt=0)
    shuffle_questions: bool = True
    max_attempts: Optional[int] = Field(default=None, ge=1)
    cooldown_minutes: Optional[int] = Field(default=None, ge=0)
    allow_review: bool = True
    access_code: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    questions: List[QuestionModel] = Field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    def question_map(self) -> Dict[str, QuestionModel]:
        return {q.id: q for q in self.questions}


def _iter_jsonl(p: Path) -> Iterable[Dict[str, Any]]:
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s or s.startswith("#") or s.startswith("//"):
                continue
            try:
                yield json.loads(s)
            except json.JSONDecodeError:
                # Skip malformed rows instead of failing the whole catalog
                continue


def _iter_json(p: Path) -> Iterable[Dict[str, Any]]:
    with p.open("r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError:
            data = []
    if isinstance(data, list):
        yield from data
    elif isinstance(data, dict):
        yield data


class AssessmentBank:
    _assessments: Dict[str, AssessmentConfig] = {}
    _loaded: bool = False

    @classmethod
    def load(cls) -> Dict[str, AssessmentConfig]:
        if not cls._loaded:
            cls.reload()
        return cls._assessments

    @classmethod
    def reload(cls, data_dir: Optional[Path] = None) -> int:
        assessments: Dict[str, AssessmentConfig] = {}
        root = Path(data_dir) if data_dir is not None else _data_dir()

        if root.exists():
            for p in sorted(root.rglob("*")):
                if not p.is_file():
                    continue
                suf = p.suffix.lower()
                if suf == ".jsonl":
                    source = _iter_jsonl(p)
                elif suf == ".json":
                    source = _iter_json(p)
                else:
                    continue

                for raw in source:
                    try:
                        a = AssessmentConfig(**raw)
                    except (ValidationError, TypeError):
                        # Skip invalid records
                        continue
                    assessments[a.id] = a

        cls._assessments = assessments
        cls._loaded = True
        return len(assessments)


# Public API
def get_assessment_config(assessment_id: str) -> Optional[AssessmentConfig]:
    return AssessmentBank.load().get(assessment_id)


def list_assessments() -> List[AssessmentConfig]:
    return list(AssessmentBank.load().values())


def reload_bank(data_dir: Optional[Path] = None) -> int:
    return AssessmentBank.reload(data_dir)
