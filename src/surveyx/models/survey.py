"""Survey definition models.

A survey definition is what a creator submits with kind CREATE_SURVEY.
The full definition is encrypted for the executor; only descriptive
fields (title, category, counts, capacity) go into the discoverable
record.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    RATING = "rating"
    TEXT = "text"


@dataclass(frozen=True)
class SurveyQuestion:
    question_text: str
    question_type: QuestionType
    options: tuple[str, ...] = ()
    required: bool = True

    def validate(self) -> list[str]:
        """Return a list of problems, empty if the question is valid."""
        errors: list[str] = []
        if not self.question_text.strip():
            errors.append("question_text must not be blank")
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            usable = [o for o in self.options if o.strip()]
            if len(usable) < 2:
                errors.append(
                    f"multiple_choice question '{self.question_text}' "
                    "needs at least two options"
                )
        return errors

    def to_dict(self) -> Dict[str, Any]:
        options: Optional[List[str]] = None
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            options = [o.strip() for o in self.options if o.strip()]
        return {
            "question_text": self.question_text.strip(),
            "question_type": self.question_type.value,
            "options": options,
            "required": self.required,
        }


@dataclass(frozen=True)
class SurveyDefinition:
    title: str
    description: str
    questions: tuple[SurveyQuestion, ...]
    category: str = "general"
    hashtags: tuple[str, ...] = ()
    max_responses: int = 100

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.title.strip():
            errors.append("title must not be blank")
        if not self.questions:
            errors.append("a survey needs at least one question")
        if self.max_responses < 1:
            errors.append("max_responses must be at least 1")
        for question in self.questions:
            errors.extend(question.validate())
        return errors

    def to_payload(self) -> Dict[str, Any]:
        """Full definition, encrypted for the executor."""
        return {
            "title": self.title.strip(),
            "description": self.description.strip(),
            "questions": [q.to_dict() for q in self.questions],
            "category": self.category,
            "hashtags": list(self.hashtags),
            "max_responses": self.max_responses,
        }

    def to_details(self) -> Dict[str, Any]:
        """Descriptive fields for the discoverable record."""
        return {
            "title": self.title.strip(),
            "description": self.description.strip(),
            "category": self.category,
            "hashtags": list(self.hashtags),
            "question_count": len(self.questions),
            "max_responses": self.max_responses,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SurveyDefinition:
        questions = tuple(
            SurveyQuestion(
                question_text=q["question_text"],
                question_type=QuestionType(q["question_type"]),
                options=tuple(q.get("options") or ()),
                required=bool(q.get("required", True)),
            )
            for q in data.get("questions", [])
        )
        return SurveyDefinition(
            title=data.get("title", ""),
            description=data.get("description", ""),
            questions=questions,
            category=data.get("category", "general"),
            hashtags=tuple(data.get("hashtags", ())),
            max_responses=int(data.get("max_responses", 100)),
        )
