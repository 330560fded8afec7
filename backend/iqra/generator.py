from __future__ import annotations
import json
import logging
import re
from typing import Any, Callable, Dict, List

from pydantic import ValidationError

from .errors import GenerationError
from .gemini_client import GeminiClient
from .schemas import ExamData
from .settings import TOTAL_LEVELS, settings

logger = logging.getLogger(__name__)

TF_OPTIONS = {"ar": ["صواب", "خطأ"], "en": ["True", "False"]}

# Gemini structured-output schema for one exam
EXAM_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "level": {"type": "INTEGER"},
        "title": {"type": "STRING", "description": "Main title for the exam"},
        "timeLimit": {"type": "INTEGER"},
        "sections": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "INTEGER"},
                    "title": {"type": "STRING", "description": "Title of this specific passage"},
                    "content": {"type": "STRING", "description": "The reading passage"},
                    "questions": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "id": {"type": "INTEGER"},
                                "type": {"type": "STRING", "enum": ["MCQ", "TF", "FILL_BLANK"]},
                                "text": {"type": "STRING"},
                                "options": {"type": "ARRAY", "items": {"type": "STRING"}},
                                "correctIndex": {"type": "INTEGER"},
                            },
                            "required": ["id", "type", "text", "options", "correctIndex"],
                        },
                    },
                },
                "required": ["id", "title", "content", "questions"],
            },
        },
    },
    "required": ["level", "title", "sections", "timeLimit"],
}


def suggested_time_limit(level: int) -> int:
    return 300 + level * 60


def _arabic_plan(level: int) -> tuple[int, str, str]:
    if level <= 4:
        words = {1: 15, 2: 30, 3: 45}.get(level, 60)
        difficulty = (
            f"Foundation level for young children (level {level}). Very short, simple sentences. "
            "Every word in the passage, questions and options MUST carry full diacritics (tashkeel)."
        )
        structure = (
            f"One section with a very short story or linked sentences for children, about {words} words.\n"
            "Questions: 2 MCQ, 2 TF, 1 FILL_BLANK (a very simple sentence taken from the passage)."
        )
    elif level <= 8:
        words = 100 + (level - 4) * 25
        difficulty = "Informational or scientific text, intermediate vocabulary, compound sentences."
        structure = (
            "One section with a scientific or historical article.\n"
            "Questions: 2 MCQ, 2 TF, 2 FILL_BLANK (3 options each)."
        )
    else:
        words = 300 + level * 30
        difficulty = "High-level Arabic: rhetoric, deep literary or intellectual texts."
        structure = (
            "Two completely separate sections.\n"
            "Section 1: a literary text (a speech or complex story). Questions: 3 inference MCQ.\n"
            "Section 2: a critical or intellectual essay. Questions: 2 TF, 2 FILL_BLANK."
        )
    return words, difficulty, structure


def _english_plan(level: int) -> tuple[int, str, str]:
    if level <= 4:
        words = 60 + level * 10
        difficulty = (
            "ESL Beginner: Simple Present tense, high-frequency vocabulary, short sentences. "
            "Topics: Family, School, Daily Routine."
        )
        structure = "Create 1 section containing a simple story or dialogue.\nQuestions: 2 MCQ, 2 TF, 1 FILL_BLANK."
    elif level <= 8:
        words = 120 + level * 15
        difficulty = (
            "ESL Intermediate: Mixed tenses (Past/Future), compound sentences. "
            "Topics: Travel, Hobbies, Nature, Culture."
        )
        structure = "Create 1 section containing an informational text or blog post.\nQuestions: 2 MCQ, 2 TF, 2 FILL_BLANK."
    else:
        words = 250 + level * 25
        difficulty = (
            "ESL Advanced: Complex grammar (conditionals, passive voice), richer vocabulary. "
            "Topics: Technology, Environment, Social Issues."
        )
        structure = (
            "Create 2 separate sections.\n"
            "Section 1: a narrative story or opinion piece. Questions: 3 MCQ (inference based).\n"
            "Section 2: an educational article. Questions: 2 TF, 2 FILL_BLANK."
        )
    return words, difficulty, structure


def build_exam_prompt(level: int, language: str) -> str:
    if language == "ar":
        words, difficulty, structure = _arabic_plan(level)
        header = f"Create an Arabic reading exam for level {level} of {TOTAL_LEVELS}. All content must be in Modern Standard Arabic."
    else:
        words, difficulty, structure = _english_plan(level)
        header = (
            f"Create an English Reading Exam (ESL - English as Second Language) for Level {level} of {TOTAL_LEVELS}. "
            "Content must be in English."
        )
    diacritics = ""
    if language == "ar" and level <= 4:
        diacritics = "CRITICAL: ALL ARABIC TEXT (PASSAGES, QUESTIONS, OPTIONS) MUST BE FULLY VOWELIZED.\n"
    tf = json.dumps(TF_OPTIONS.get(language, TF_OPTIONS["en"]), ensure_ascii=False)
    return (
        f"{header}\n"
        f"{diacritics}"
        f"Target Word Count: {words} words (strict for low levels).\n"
        f"Difficulty Description: {difficulty}\n"
        f"Structure Requirements:\n{structure}\n"
        f"Suggested Time: {suggested_time_limit(level)} seconds.\n"
        "Rules for questions:\n"
        "1. Type 'MCQ': 'options' must have 3-4 choices.\n"
        f"2. Type 'TF': 'options' must be exactly {tf}.\n"
        "3. Type 'FILL_BLANK': 3 options (1 correct + 2 distractors); 'text' contains the sentence with '_______' for the blank.\n"
        "4. 'correctIndex' is the 0-based index of the correct option.\n"
        "Return JSON only, matching the schema exactly."
    )


def extract_json_object(text: str) -> Any:
    try:
        return json.loads(text)
    except Exception:
        pass
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        candidate = code_block.group(1)
        try:
            return json.loads(candidate)
        except Exception:
            pass
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last != -1 and last > first:
        candidate = text[first : last + 1]
        try:
            return json.loads(candidate)
        except Exception:
            pass
    raise GenerationError("Model did not return valid JSON.")


def normalize_exam(data: Any, level: int) -> ExamData:
    """Validate raw model output and renumber question ids 1..N across sections."""
    if not isinstance(data, dict):
        raise GenerationError("Exam payload is not an object")
    raw_sections = data.get("sections")
    if not isinstance(raw_sections, list) or not raw_sections:
        raise GenerationError("Exam has no sections")
    next_id = 1
    sections: List[Dict[str, Any]] = []
    for s_index, section in enumerate(raw_sections, start=1):
        if not isinstance(section, dict) or not isinstance(section.get("questions"), list):
            raise GenerationError(f"Section {s_index} is malformed")
        questions = []
        for q in section["questions"]:
            if not isinstance(q, dict):
                raise GenerationError(f"Section {s_index} contains a malformed question")
            options = q.get("options")
            if isinstance(options, list):
                options = [str(o).strip() for o in options]
            questions.append({**q, "id": next_id, "options": options})
            next_id += 1
        sections.append({
            "id": s_index,
            "title": str(section.get("title") or ""),
            "content": section.get("content"),
            "questions": questions,
        })
    if next_id == 1:
        raise GenerationError("Exam has no questions")
    time_limit = data.get("timeLimit")
    try:
        return ExamData.model_validate({
            "level": level,
            "title": str(data.get("title") or f"Level {level}"),
            "timeLimit": time_limit if isinstance(time_limit, int) and time_limit > 0 else 0,
            "sections": sections,
        })
    except ValidationError as exc:
        raise GenerationError(f"Exam failed validation ({exc.error_count()} problems)") from exc


class ContentGenerator:
    def __init__(self, client_factory: Callable[[], GeminiClient] = GeminiClient, *, temperature: float | None = None) -> None:
        self._client_factory = client_factory
        self._temperature = settings.generation_temperature if temperature is None else temperature

    async def generate(self, level: int, language: str) -> ExamData:
        prompt = build_exam_prompt(level, language)
        try:
            client = self._client_factory()
        except ValueError as exc:
            raise GenerationError(str(exc)) from exc
        try:
            raw = await client.generate(
                prompt,
                generation_config={
                    "temperature": self._temperature,
                    "responseMimeType": "application/json",
                    "responseSchema": EXAM_RESPONSE_SCHEMA,
                },
            )
        except Exception as exc:
            logger.error("Exam generation failed for %s level %d: %s", language, level, exc)
            raise GenerationError("Could not generate exam") from exc
        finally:
            await client.aclose()
        exam = normalize_exam(extract_json_object(raw), level)
        logger.info("Generated %s level %d exam with %d questions", language, level, len(exam.all_questions()))
        return exam
