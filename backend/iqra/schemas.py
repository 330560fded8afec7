from __future__ import annotations
import enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .settings import TOTAL_LEVELS

ContentLanguage = Literal["ar", "en"]


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    TF = "TF"
    FILL_BLANK = "FILL_BLANK"


class ExamMode(str, enum.Enum):
    TIMED = "TIMED"
    UNTIMED = "UNTIMED"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Question(_Frozen):
    id: int
    type: QuestionType
    text: str
    options: List[str] = Field(min_length=2)
    correct_index: int = Field(alias="correctIndex")

    @model_validator(mode="after")
    def _check_options(self) -> "Question":
        if self.type is QuestionType.TF and len(self.options) != 2:
            raise ValueError("true/false questions must have exactly 2 options")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"correctIndex {self.correct_index} out of range for {len(self.options)} options")
        return self


class ExamSection(_Frozen):
    id: int
    title: str
    content: str
    questions: List[Question]


class ExamData(_Frozen):
    level: int = Field(ge=1, le=TOTAL_LEVELS)
    title: str
    time_limit: int = Field(default=0, ge=0, alias="timeLimit")
    sections: List[ExamSection] = Field(min_length=1)

    def all_questions(self) -> List[Question]:
        """Flat question list: section order, then in-section order."""
        return [q for section in self.sections for q in section.questions]


class AnswerDetail(_Frozen):
    question_text: str = Field(alias="questionText")
    user_answer: str = Field(alias="userAnswer")
    correct_answer: str = Field(alias="correctAnswer")
    is_correct: bool = Field(alias="isCorrect")


class ExamResult(_Frozen):
    id: str
    student_name: str = Field(alias="studentName")
    level: int
    score: int = Field(ge=0, le=100)
    total_questions: int = Field(alias="totalQuestions")
    date: str
    mode: ExamMode
    language: ContentLanguage
    details: List[AnswerDetail] = Field(default_factory=list)


class UserProgress(_Frozen):
    current_level: int = Field(default=1, ge=1, le=TOTAL_LEVELS, alias="currentLevel")
    max_unlocked_level: int = Field(default=1, ge=1, le=TOTAL_LEVELS, alias="maxUnlockedLevel")


class NewsItem(_Frozen):
    id: str
    title: str
    content: str
    date: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class AppSettings(_Frozen):
    logo_url: Optional[str] = Field(default=None, alias="logoUrl")
    hero_bg_url: Optional[str] = Field(default=None, alias="heroBgUrl")
    school_name_ar: str = Field(default="مدرسة صلالة الخاصة", alias="schoolNameAr")
    school_name_en: str = Field(default="Salalah Private School", alias="schoolNameEn")


class CloudConfig(BaseModel):
    """Connection details for the realtime mirror; only api_key and database_url are mandatory."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str = Field(default="", alias="apiKey")
    database_url: str = Field(default="", alias="databaseURL")
    auth_domain: str = Field(default="", alias="authDomain")
    project_id: str = Field(default="", alias="projectId")
    storage_bucket: str = Field(default="", alias="storageBucket")
    messaging_sender_id: str = Field(default="", alias="messagingSenderId")
    app_id: str = Field(default="", alias="appId")
