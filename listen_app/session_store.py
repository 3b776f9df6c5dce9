import json
import logging

from sqlalchemy import func, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from . import db
from .errors import ConflictError, EmptyContentError, NotFoundError, SessionCreateError
from .models import ListeningSession, QuizAttempt, User
from .text_utils import derive_title, estimate_duration_seconds

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


# --- accounts ---------------------------------------------------------------

def create_user(email, password):
    """Registers an account. Emails are stored lower-cased and must be unique."""
    user = User(email=email.strip().lower(), password_hash=generate_password_hash(password))
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered")

    logger.info("Registered user %s", user.id)
    return user


def authenticate(email, password):
    """Returns the matching user, or None when the credentials are wrong."""
    user = User.query.filter_by(email=email.strip().lower()).first()
    if user is None or not check_password_hash(user.password_hash, password):
        return None
    return user


def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# --- sessions ---------------------------------------------------------------

def create_session(user_id, content_text, content_title=None):
    """Persists a new listening session for ``user_id`` and returns its id."""
    if not content_text or not content_text.strip():
        raise EmptyContentError("content_text required")

    new_session = ListeningSession(
        user_id=user_id,
        content_text=content_text,
        content_title=content_title or derive_title(content_text),
        total_duration_seconds=estimate_duration_seconds(content_text)
    )
    try:
        db.session.add(new_session)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Failed to create listening session: %s", e)
        raise SessionCreateError("Failed to create session")

    logger.info("Created listening session %s (%s)", new_session.id, new_session.content_title)
    return new_session.id


def get_session(session_id, user_id):
    """Loads one of ``user_id``'s sessions; other users' sessions look missing."""
    session_obj = db.session.get(ListeningSession, session_id)
    if session_obj is None or session_obj.user_id != user_id:
        raise NotFoundError("Session not found", details={"session_id": session_id})
    return session_obj


def list_sessions(user_id, limit=20, offset=0):
    """Returns one page of the user's sessions, newest first, with their overall count."""
    limit = max(1, min(limit or 20, MAX_PAGE_SIZE))
    offset = max(0, offset or 0)

    total = db.session.query(func.count(ListeningSession.id))\
        .filter(ListeningSession.user_id == user_id).scalar()
    sessions = ListeningSession.query.filter_by(user_id=user_id)\
        .order_by(desc(ListeningSession.created_at), desc(ListeningSession.id))\
        .limit(limit).offset(offset).all()
    return sessions, total


def record_quiz_attempt(user_id, session_id, question, options, user_answer, correct_answer, is_correct):
    """Stores an answered question against one of the user's sessions and returns the attempt id."""
    get_session(session_id, user_id)

    attempt = QuizAttempt(
        session_id=session_id,
        question=question,
        options=json.dumps(options),
        user_answer=user_answer,
        correct_answer=correct_answer,
        is_correct=bool(is_correct)
    )
    db.session.add(attempt)
    db.session.commit()
    return attempt.id


def list_attempts(session_id, user_id):
    get_session(session_id, user_id)
    return QuizAttempt.query.filter_by(session_id=session_id)\
        .order_by(QuizAttempt.created_at, QuizAttempt.id).all()


class SqlSessionStore:
    """
    Session store used by one user's playback coordinator.

    Coordinators call it from timer and worker threads, so every method pushes
    its own application context and returns plain values rather than ORM rows.
    """

    def __init__(self, app, user_id):
        self.app = app
        self.user_id = user_id

    def create_session(self, text, title=None):
        with self.app.app_context():
            return create_session(self.user_id, text, title)

    def record_quiz_attempt(self, session_id, question, options, user_answer, correct_answer, is_correct):
        with self.app.app_context():
            return record_quiz_attempt(
                self.user_id, session_id, question, options, user_answer, correct_answer, is_correct
            )
