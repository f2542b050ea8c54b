import re
import json
import random
import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

import config

logger = logging.getLogger(__name__)


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from question text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


class QuestionRecord(BaseModel):
    """One entry of the question bank. Frozen so rounds can't mutate it."""
    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    options: tuple[str, ...]
    image: Optional[str] = None

    @field_validator('question')
    @classmethod
    def validate_question(cls, v: str) -> str:
        v = _sanitize_text(v)[:config.MAX_QUESTION_TEXT_LENGTH]
        if not v:
            raise ValueError('Question text must not be empty')
        return v

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v: str) -> str:
        return _sanitize_text(v)[:config.MAX_OPTION_LENGTH]

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        v = tuple(_sanitize_text(opt)[:config.MAX_OPTION_LENGTH] for opt in v)
        if len(v) < 2:
            raise ValueError('Question must have at least 2 options')
        return v

    @field_validator('image')
    @classmethod
    def validate_image(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode='after')
    def answer_is_an_option(self) -> 'QuestionRecord':
        if self.answer not in self.options:
            raise ValueError('Answer must be one of the options')
        return self


class QuestionBank:
    def __init__(self, questions: Optional[List[QuestionRecord]] = None):
        self.questions: List[QuestionRecord] = list(questions or [])

    def __len__(self) -> int:
        return len(self.questions)

    def random_question(self) -> QuestionRecord:
        return random.choice(self.questions)

    @classmethod
    def from_records(cls, records: list) -> "QuestionBank":
        questions = []
        for i, record in enumerate(records):
            try:
                questions.append(QuestionRecord.model_validate(record))
            except ValidationError as e:
                logger.warning("Skipping invalid question #%d: %s", i, e.errors()[0]["msg"])
        return cls(questions)

    @classmethod
    def from_file(cls, path: str) -> "QuestionBank":
        try:
            with open(path, encoding="utf-8") as f:
                records = json.load(f)
        except FileNotFoundError:
            logger.error("Question file not found: %s", path)
            return cls()
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Could not read question file %s: %s", path, e)
            return cls()

        if not isinstance(records, list):
            logger.error("Question file %s must contain a JSON list", path)
            return cls()

        bank = cls.from_records(records)
        logger.info("Loaded %d questions from %s", len(bank), path)
        return bank


question_bank = QuestionBank.from_file(config.QUESTIONS_FILE)
