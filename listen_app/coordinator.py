"""
Playback/quiz session coordinator.

Reads a text aloud one chunk at a time through a speech engine, interrupts it
with a comprehension quiz every ``quiz_interval_minutes`` and resumes from the
word where the quiz was triggered.

All transitions run under one re-entrant lock. Events arrive from request
threads (chunk callbacks, user actions) and from the quiz timer thread. Every
utterance is stamped with a generation number and every armed timer with an
epoch, so callbacks belonging to a cancelled utterance or timer are dropped.
"""
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .errors import CoordinatorBusyError, EmptyContentError, ListenAppError, SessionCreateError
from .quiz_generator import DIFFICULTIES
from .speech import Utterance
from .text_utils import CHUNK_SIZE, chunk_at, derive_title, quiz_window, split_words

logger = logging.getLogger(__name__)

MIN_SPEED = 0.5
MAX_SPEED = 2.0
PLACEHOLDER_QUESTION = "Quiz generation failed. Continue?"


class PlaybackStatus(str, Enum):
    IDLE = 'idle'
    PLAYING = 'playing'
    PAUSED = 'paused'
    QUIZ_PENDING = 'quiz_pending'


@dataclass
class QuizState:
    question: str
    options: Dict[str, str]
    correct_key: str
    resume_cursor: int
    explanation: Optional[str] = None
    answered_key: Optional[str] = None
    is_placeholder: bool = False

    @classmethod
    def from_generated(cls, generated, resume_cursor):
        return cls(
            question=generated.question,
            options=dict(generated.options),
            correct_key=generated.correct_answer,
            explanation=generated.explanation,
            resume_cursor=resume_cursor
        )

    @classmethod
    def placeholder(cls, resume_cursor):
        return cls(
            question=PLACEHOLDER_QUESTION,
            options={'A': 'Continue'},
            correct_key='A',
            resume_cursor=resume_cursor,
            is_placeholder=True
        )

    @property
    def is_answered(self):
        return self.answered_key is not None

    @property
    def is_correct(self):
        if self.answered_key is None:
            return None
        return self.answered_key == self.correct_key

    def to_dict(self):
        data = {
            'question': self.question,
            'options': self.options,
            'answered_key': self.answered_key,
            'is_correct': self.is_correct,
            'is_placeholder': self.is_placeholder,
        }
        # The answer is only revealed once the user has committed to one.
        if self.is_answered:
            data['correct_answer'] = self.correct_key
            data['explanation'] = self.explanation
        return data


@dataclass(frozen=True)
class QuizAttemptRecord:
    session_id: int
    question: str
    options: Dict[str, str]
    user_answer: str
    correct_answer: str
    is_correct: bool


class SessionCoordinator:

    def __init__(self, store, generator, engine, quiz_interval_minutes=2, difficulty='medium',
                 speed=1.0, voice_id=None, timer_factory=threading.Timer, executor=None):
        self.store = store
        self.generator = generator
        self.engine = engine
        self._timer_factory = timer_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='quiz-attempts')
        self._lock = threading.RLock()

        self.text = ''
        self.words = []
        self.title = None
        self.session_id = None
        self.cursor = 0
        self.speed = self._check_speed(speed)
        self.voice_id = voice_id
        self.quiz_interval_minutes = self._check_interval(quiz_interval_minutes)
        self.difficulty = difficulty if difficulty in DIFFICULTIES else 'medium'

        self.status = PlaybackStatus.IDLE
        self.loading = False
        self.quiz = None
        self.utterance = None

        self._generation = 0
        self._timer = None
        self._timer_epoch = 0

    @property
    def is_playing(self):
        return self.status == PlaybackStatus.PLAYING

    # --- validation -----------------------------------------------------

    @staticmethod
    def _as_number(value, name):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"{name} must be a number")
        return float(value)

    @classmethod
    def _check_speed(cls, rate):
        rate = cls._as_number(rate, "speed")
        if not MIN_SPEED <= rate <= MAX_SPEED:
            raise ValueError(f"speed must be between {MIN_SPEED} and {MAX_SPEED}")
        return rate

    @classmethod
    def _check_interval(cls, minutes):
        minutes = cls._as_number(minutes, "quiz interval")
        if not math.isfinite(minutes) or minutes <= 0:
            raise ValueError("quiz interval must be a positive number of minutes")
        return minutes

    def _ensure_idle_for_change(self):
        if self.loading or self.quiz is not None or self.status == PlaybackStatus.QUIZ_PENDING:
            raise CoordinatorBusyError("A quiz is in progress")

    def _load_text(self, text, title=None, session_id=None):
        self.text = text
        self.words = split_words(text)
        self.title = title or derive_title(text)
        self.session_id = session_id
        self.cursor = 0
        self.status = PlaybackStatus.IDLE

    # --- playback -------------------------------------------------------

    def bind_session(self, session_id, text, title=None):
        """Reuses an already persisted session instead of creating a new one on start."""
        if not text or not text.strip():
            raise EmptyContentError("Nothing to read: the text is empty")
        with self._lock:
            self._ensure_idle_for_change()
            if self.is_playing:
                self.pause()
            self._load_text(text, title, session_id)
            logger.info("Bound coordinator to session %s", session_id)

    def start(self, text=None, resume_cursor=None, title=None):
        """
        Starts (or resumes) reading ``text`` aloud.

        ``resume_cursor`` defaults to where playback last stopped; a finished
        text starts over from the beginning. Creates the session on first play.
        """
        with self._lock:
            if text is None:
                text = self.text
            if not text or not text.strip():
                raise EmptyContentError("Nothing to read: the text is empty")
            self._ensure_idle_for_change()
            if self.is_playing:
                return self.session_id

            if text != self.text:
                self._load_text(text, title)
            needs_session = self.session_id is None
            if needs_session:
                self.loading = True
            session_title = self.title

        created_id = None
        if needs_session:
            try:
                created_id = self._create_session(text, session_title)
            except ListenAppError:
                with self._lock:
                    self.loading = False
                raise

        with self._lock:
            # The id lands in the same critical section that clears loading
            if needs_session:
                self.session_id = created_id
                self.loading = False
            if resume_cursor is None:
                resume_cursor = self.cursor if self.cursor < len(self.words) else 0
            self.cursor = max(0, min(int(resume_cursor), len(self.words)))
            self.status = PlaybackStatus.PLAYING
            logger.debug("Playback started for session %s at word %s", self.session_id, self.cursor)
            self._arm_quiz_timer()
            self._speak_from(self.cursor)
            return self.session_id

    def _create_session(self, text, title):
        try:
            return self.store.create_session(text, title)
        except (SessionCreateError, EmptyContentError):
            raise
        except Exception as e:
            logger.error("Session store rejected new session: %s", e)
            raise SessionCreateError("Failed to start session", details={"reason": str(e)})

    def pause(self):
        with self._lock:
            if not self.is_playing:
                return
            self._cancel_utterance()
            self._disarm_quiz_timer()
            self.status = PlaybackStatus.PAUSED
            logger.debug("Playback paused at word %s", self.cursor)

    def on_chunk_complete(self, chunk_word_count=CHUNK_SIZE, generation=None):
        """
        Advances past a finished chunk and queues the next one.

        Returns False when the callback was stale or playback is no longer active.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.info("Dropping completion from cancelled utterance %s", generation)
                return False
            if not self.is_playing:
                return False

            self.cursor = min(len(self.words), self.cursor + int(chunk_word_count))
            if self.cursor < len(self.words):
                self._speak_from(self.cursor)
            else:
                self._finish()
            return True

    def on_chunk_error(self, generation, error=None):
        with self._lock:
            if generation != self._generation or not self.is_playing:
                return False
            logger.warning("Speech engine failed on word %s: %s", self.cursor, error)
            self.pause()
            return True

    def change_speed(self, rate):
        with self._lock:
            self.speed = self._check_speed(rate)
            if self.is_playing:
                self._speak_from(self.cursor)

    def change_voice(self, voice_id):
        with self._lock:
            self.voice_id = voice_id or None
            if self.is_playing:
                self._speak_from(self.cursor)

    def set_quiz_interval(self, minutes):
        """Applies from the next time the quiz timer is armed."""
        with self._lock:
            self.quiz_interval_minutes = self._check_interval(minutes)

    def set_difficulty(self, difficulty):
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
        with self._lock:
            self.difficulty = difficulty

    def _speak_from(self, start):
        chunk = chunk_at(self.words, start)
        if not chunk:
            self._finish()
            return

        self._cancel_utterance()
        generation = self._generation
        word_count = len(chunk)
        self.utterance = Utterance(
            generation=generation,
            text=' '.join(chunk),
            start_word=start,
            word_count=word_count,
            rate=self.speed,
            voice_id=self.voice_id
        )
        self.engine.speak(
            self.utterance,
            on_complete=lambda: self.on_chunk_complete(word_count, generation),
            on_error=lambda err: self.on_chunk_error(generation, err)
        )

    def _cancel_utterance(self):
        self._generation += 1
        self.utterance = None
        self.engine.cancel()

    def _finish(self):
        self._cancel_utterance()
        self._disarm_quiz_timer()
        self.status = PlaybackStatus.IDLE
        logger.info("Finished reading session %s (%d words)", self.session_id, len(self.words))

    # --- quiz timer -----------------------------------------------------

    def _arm_quiz_timer(self):
        self._disarm_quiz_timer()
        epoch = self._timer_epoch
        self._timer = self._timer_factory(self.quiz_interval_minutes * 60, lambda: self._on_timer(epoch))
        self._timer.daemon = True
        self._timer.start()

    def _disarm_quiz_timer(self):
        self._timer_epoch += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, epoch):
        self.on_quiz_timer_fire(timer_epoch=epoch)

    def on_quiz_timer_fire(self, timer_epoch=None):
        """
        Interrupts playback with a quiz about the text heard so far.

        A no-op without a session, while a quiz is already open or loading, or
        when ``timer_epoch`` names a timer that has since been disarmed.
        Generator failures produce a single-option placeholder quiz.
        """
        with self._lock:
            if timer_epoch is not None and timer_epoch != self._timer_epoch:
                return None
            if self.session_id is None or self.quiz is not None or self.loading:
                return None
            resume_cursor = self.cursor
            self._cancel_utterance()
            self._disarm_quiz_timer()
            self.status = PlaybackStatus.QUIZ_PENDING
            self.loading = True
            excerpt = quiz_window(self.words, resume_cursor)
            difficulty = self.difficulty

        try:
            quiz = QuizState.from_generated(self.generator.generate(excerpt, difficulty), resume_cursor)
        except Exception as e:
            logger.warning("Quiz generation failed, offering placeholder: %s", e)
            quiz = QuizState.placeholder(resume_cursor)

        with self._lock:
            self.loading = False
            self.quiz = quiz
            logger.debug("Quiz ready for session %s at word %s", self.session_id, resume_cursor)
            return quiz

    # --- quiz answers ---------------------------------------------------

    def answer_quiz(self, key):
        """
        Records the user's choice. Once answered, further calls change nothing
        until ``retry_quiz``. Returns whether the recorded answer is correct.
        """
        with self._lock:
            quiz = self.quiz
            if quiz is None:
                return None
            if quiz.is_answered:
                return quiz.is_correct
            if not isinstance(key, str) or key not in quiz.options:
                raise ValueError(f"unknown option {key!r}")

            quiz.answered_key = key
            if not quiz.is_placeholder and self.session_id is not None:
                record = QuizAttemptRecord(
                    session_id=self.session_id,
                    question=quiz.question,
                    options=dict(quiz.options),
                    user_answer=key,
                    correct_answer=quiz.correct_key,
                    is_correct=quiz.is_correct
                )
                self._executor.submit(self._submit_attempt, record)
            return quiz.is_correct

    def _submit_attempt(self, record):
        try:
            attempt_id = self.store.record_quiz_attempt(
                record.session_id,
                record.question,
                record.options,
                record.user_answer,
                record.correct_answer,
                record.is_correct
            )
            logger.debug("Recorded quiz attempt %s for session %s", attempt_id, record.session_id)
            return attempt_id
        except ListenAppError as e:
            logger.warning("Could not record quiz attempt for session %s: %s", record.session_id, e.message)
        except Exception:
            logger.exception("Unexpected failure recording quiz attempt for session %s", record.session_id)
        return None

    def retry_quiz(self):
        """Lets the user answer again after a wrong answer."""
        with self._lock:
            if self.quiz is None or self.quiz.is_correct is not False:
                return False
            self.quiz.answered_key = None
            return True

    def continue_after_quiz(self):
        """Closes the quiz and resumes from the word where it was triggered."""
        with self._lock:
            if self.quiz is None:
                return False
            resume_cursor = self.quiz.resume_cursor
            self.quiz = None
            self.cursor = resume_cursor
            self.status = PlaybackStatus.PLAYING
            self._arm_quiz_timer()
            self._speak_from(resume_cursor)
            return True

    def skip_quiz(self):
        with self._lock:
            if self.quiz is not None and not self.quiz.is_answered:
                logger.info("Quiz skipped for session %s", self.session_id)
            return self.continue_after_quiz()

    # --- inspection -----------------------------------------------------

    def snapshot(self):
        with self._lock:
            word_count = len(self.words)
            return {
                'status': self.status.value,
                'is_playing': self.is_playing,
                'loading': self.loading,
                'session_id': self.session_id,
                'title': self.title,
                'cursor': self.cursor,
                'word_count': word_count,
                'progress': round(100.0 * self.cursor / word_count, 1) if word_count else 0.0,
                'speed': self.speed,
                'voice_id': self.voice_id,
                'quiz_interval_minutes': self.quiz_interval_minutes,
                'difficulty': self.difficulty,
                'utterance': self.utterance.to_dict() if self.utterance else None,
                'quiz': self.quiz.to_dict() if self.quiz else None,
            }

    def shutdown(self):
        with self._lock:
            self.pause()
            self._disarm_quiz_timer()
        self._executor.shutdown(wait=False)
