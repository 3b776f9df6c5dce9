from . import db
import datetime
import json


class User(db.Model):
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)
    sessions = db.relationship('ListeningSession', backref='user', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User id={self.id} email='{self.email}'>"


class ListeningSession(db.Model):
    """Represents one piece of text a user listens to."""
    __tablename__ = 'listening_session'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    content_title = db.Column(db.String, nullable=True)
    content_text = db.Column(db.Text, nullable=False)
    total_duration_seconds = db.Column(db.Integer, nullable=True) # Rough estimate, two words per second
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)
    attempts = db.relationship('QuizAttempt', backref='session', lazy=True, cascade="all, delete-orphan")

    def to_dict(self, include_content=False):
        data = {
            "id": self.id,
            "content_title": self.content_title,
            "total_duration_seconds": self.total_duration_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_content:
            data["content_text"] = self.content_text
        return data

    def __repr__(self):
        return f"<ListeningSession id={self.id} title='{self.content_title}'>"


class QuizAttempt(db.Model):
    """An answered comprehension question. Rows are written once and never updated."""
    __tablename__ = 'quiz_attempt'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('listening_session.id'), nullable=False)
    question = db.Column(db.Text, nullable=False)
    options = db.Column(db.Text, nullable=False) # JSON mapping of option key to text
    user_answer = db.Column(db.String(1), nullable=False)
    correct_answer = db.Column(db.String(1), nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question": self.question,
            "options": json.loads(self.options),
            "user_answer": self.user_answer,
            "correct_answer": self.correct_answer,
            "is_correct": self.is_correct,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<QuizAttempt session_id={self.session_id} correct={self.is_correct}>"
