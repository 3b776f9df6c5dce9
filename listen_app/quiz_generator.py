import json
import logging
import random
import re
from typing import Dict, Optional

import openai
from langchain_openai import ChatOpenAI
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import EmptyContentError, FormatError, ServiceUnavailableError

logger = logging.getLogger(__name__)

OPTION_KEYS = ('A', 'B', 'C', 'D')
DIFFICULTIES = ('easy', 'medium', 'hard')
MAX_EXCERPT_CHARS = 4000

DIFFICULTY_GUIDANCE = {
    'easy': 'Use simple vocabulary and test basic recall of explicit facts.',
    'medium': 'Test understanding of main ideas and moderate inference.',
    'hard': 'Require deeper analysis, inference, and synthesis of concepts.',
}

# Literal braces are doubled because the template is formatted by LangChain.
SYSTEM_PROMPT = """You are a comprehension quiz generator. Given a text chunk, create ONE multiple-choice question that tests understanding of the content. Return ONLY valid JSON in this exact format, no other text:
{{"question":"Your question here?","options":{{"A":"First option","B":"Second option","C":"Third option","D":"Fourth option"}},"correct_answer":"A","explanation":"Brief 1-2 sentence explanation of why the correct answer is right."}}

The correct_answer must be one of A, B, C, or D. Make questions clear and based on key facts or concepts from the text. The explanation should briefly clarify why the correct answer is correct. Difficulty: {difficulty_guidance}"""


class GeneratedQuiz(BaseModel):
    question: str = Field(min_length=1, description="The comprehension question.")
    options: Dict[str, str] = Field(description="Answer options keyed by letter A-D.")
    correct_answer: str = Field(description="The key of the correct option.")
    explanation: Optional[str] = None

    @field_validator('options')
    @classmethod
    def _check_options(cls, options):
        options = {k: v for k, v in options.items() if v}
        if not options or any(key not in OPTION_KEYS for key in options):
            raise ValueError('options must be keyed by A, B, C or D')
        return options

    @model_validator(mode='after')
    def _check_correct_answer(self):
        if self.correct_answer not in self.options:
            raise ValueError('correct_answer must name one of the options')
        return self


def normalize_difficulty(difficulty):
    return difficulty if difficulty in DIFFICULTIES else 'medium'


def get_openrouter_client(model_name, temperature, api_key, max_retries):
    """Helper function to create a ChatOpenAI client for OpenRouter."""
    return ChatOpenAI(
        model=model_name,
        temperature=temperature,
        openai_api_key=api_key,
        openai_api_base="https://openrouter.ai/api/v1",
        default_headers={
            "HTTP-Referer": "http://localhost",
            "X-Title": "Listen and Quiz"
        },
        max_retries=max_retries
    )


def parse_quiz_payload(text):
    """Parses the model's reply, tolerating a ```json fence around the object."""
    if not text or not text.strip():
        raise FormatError("Empty response from quiz model")

    s = text.strip()
    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", s, re.DOTALL)
    if fenced:
        s = fenced.group(1)

    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise FormatError("Quiz model did not return JSON", details={"reason": str(e)})

    if not isinstance(data, dict):
        raise FormatError("Quiz model returned a non-object payload")

    try:
        return GeneratedQuiz.model_validate(data)
    except ValidationError as e:
        raise FormatError("Invalid quiz format from AI", details={"reason": str(e)})


def shuffle_options(quiz, rng=random):
    """Shuffles option texts across the letters so the answer is not always A."""
    keys = [k for k in OPTION_KEYS if k in quiz.options]
    values = [quiz.options[k] for k in keys]
    correct_value = quiz.options[quiz.correct_answer]
    rng.shuffle(values)
    shuffled = dict(zip(keys, values))
    new_correct = keys[values.index(correct_value)]
    return quiz.model_copy(update={"options": shuffled, "correct_answer": new_correct})


class LLMQuizGenerator:
    """Writes one multiple-choice question about a text excerpt via OpenRouter."""

    def __init__(self, api_key, model_name, temperature=0.7, max_retries=3, client=None, rng=None):
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_retries = max_retries
        self._client = client
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config, **kwargs):
        return cls(
            api_key=config.get('OPENROUTER_API_KEY'),
            model_name=config.get('QUIZ_MODEL'),
            temperature=config.get('QUIZ_TEMPERATURE', 0.7),
            max_retries=config.get('OPENROUTER_MAX_RETRIES', 3),
            **kwargs
        )

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise ServiceUnavailableError("OpenRouter API not configured")
        self._client = get_openrouter_client(self.model_name, self.temperature, self.api_key, self.max_retries)
        return self._client

    def generate(self, text_excerpt, difficulty='medium'):
        if not text_excerpt or not text_excerpt.strip():
            raise EmptyContentError("content (text chunk) required")

        client = self._get_client()
        difficulty = normalize_difficulty(difficulty)

        prompt = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_PROMPT),
            ("user", "{content}"),
        ])
        chain = prompt | client | StrOutputParser()

        try:
            reply = chain.invoke({
                "difficulty_guidance": DIFFICULTY_GUIDANCE[difficulty],
                "content": text_excerpt[:MAX_EXCERPT_CHARS],
            })
        except openai.AuthenticationError as e:
            raise ServiceUnavailableError("Invalid OpenRouter API key", details={"reason": str(e)})
        except openai.OpenAIError as e:
            logger.error("Quiz generation request failed: %s", e)
            raise ServiceUnavailableError("Quiz model request failed", details={"reason": str(e)})

        quiz = parse_quiz_payload(reply)
        logger.debug("Generated %s quiz with %d options", difficulty, len(quiz.options))
        return shuffle_options(quiz, self._rng)
