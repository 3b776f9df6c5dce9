import datetime

from sqlalchemy import func, desc, case

from . import db
from .models import ListeningSession, QuizAttempt


def _score_expression():
    return func.avg(case((QuizAttempt.is_correct.is_(True), 100.0), else_=0.0))


def _user_attempts(user_id, *columns):
    return db.session.query(*columns).select_from(QuizAttempt)\
        .join(ListeningSession, QuizAttempt.session_id == ListeningSession.id)\
        .filter(ListeningSession.user_id == user_id)


def daily_streak(user_id, today=None):
    """
    Counts consecutive days with quiz activity, walking back from today.
    A day without any attempt today means the streak is 0.
    """
    today = today or datetime.datetime.utcnow().date()
    timestamps = _user_attempts(user_id, QuizAttempt.created_at).all()
    active_days = {ts.date() for (ts,) in timestamps if ts is not None}

    streak = 0
    expected = today
    while expected in active_days:
        streak += 1
        expected -= datetime.timedelta(days=1)
    return streak


def dashboard_summary(user_id, today=None):
    """Aggregate comprehension stats across every session of one user."""
    total, avg_score, sessions_with_quizzes = _user_attempts(
        user_id,
        func.count(QuizAttempt.id),
        _score_expression(),
        func.count(func.distinct(QuizAttempt.session_id))
    ).one()

    return {
        'total_quizzes_completed': total or 0,
        'average_comprehension_score': round(float(avg_score), 2) if avg_score is not None else 0,
        'daily_streak': daily_streak(user_id, today),
        'sessions_with_quizzes': sessions_with_quizzes or 0,
    }


def score_trends(user_id, limit=7):
    """Per-session score for the user's most recent sessions that have quiz attempts."""
    rows = db.session.query(
        ListeningSession.id,
        ListeningSession.content_title,
        ListeningSession.created_at,
        func.count(QuizAttempt.id).label('attempts'),
        _score_expression().label('score')
    ).join(QuizAttempt, QuizAttempt.session_id == ListeningSession.id)\
     .filter(ListeningSession.user_id == user_id)\
     .group_by(ListeningSession.id)\
     .order_by(desc(ListeningSession.created_at), desc(ListeningSession.id))\
     .limit(limit).all()

    return [{
        'session_id': session_id,
        'content_title': title,
        'date': created_at.date().isoformat() if created_at else None,
        'score': round(float(score), 2) if score is not None else 0,
        'attempts': attempts or 0,
    } for session_id, title, created_at, attempts, score in rows]
