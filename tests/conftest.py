"""
Shared fixtures.

Only the edges are faked: the quiz timer, the background executor, the LLM
and (for coordinator unit tests) the session store. The database is a real
in-memory SQLite behind Flask-SQLAlchemy.
"""
import random
import threading
from concurrent.futures import Future

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from listen_app import create_app, db
from listen_app.coordinator import SessionCoordinator
from listen_app.quiz_generator import GeneratedQuiz, LLMQuizGenerator
from listen_app.session_store import SqlSessionStore
from listen_app.speech import BrowserSpeechEngine

TEST_EMAIL = 'reader@example.com'
TEST_PASSWORD = 'test-password'

QUIZ_JSON = (
    '{"question": "What colour is the sky?", '
    '"options": {"A": "Blue", "B": "Green", "C": "Red", "D": "Black"}, '
    '"correct_answer": "A", "explanation": "The text says the sky is blue."}'
)


def make_text(word_count):
    return ' '.join(f'word{i}' for i in range(word_count))


class FakeTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class TimerRecorder:
    """Stands in for ``threading.Timer`` and keeps every timer it created."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]

    @property
    def armed(self):
        return [t for t in self.timers if t.started and not t.cancelled]


class SyncExecutor:
    """Runs submitted work immediately so attempt submission is observable."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_result(fn(*args, **kwargs))
        return future

    def shutdown(self, wait=True):
        pass


class FakeStore:
    def __init__(self):
        self.sessions = {}
        self.attempts = []
        self.create_error = None
        self.attempt_error = None

    def create_session(self, text, title=None):
        if self.create_error is not None:
            raise self.create_error
        session_id = len(self.sessions) + 1
        self.sessions[session_id] = (text, title)
        return session_id

    def record_quiz_attempt(self, session_id, question, options, user_answer, correct_answer, is_correct):
        if self.attempt_error is not None:
            raise self.attempt_error
        self.attempts.append({
            'session_id': session_id,
            'question': question,
            'options': options,
            'user_answer': user_answer,
            'correct_answer': correct_answer,
            'is_correct': is_correct,
        })
        return len(self.attempts)


class FakeGenerator:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def generate(self, text_excerpt, difficulty='medium'):
        self.calls.append((text_excerpt, difficulty))
        if self.error is not None:
            raise self.error
        return GeneratedQuiz(
            question='What colour is the sky?',
            options={'A': 'Blue', 'B': 'Green', 'C': 'Red', 'D': 'Black'},
            correct_answer='A',
            explanation='The text says the sky is blue.'
        )


class Gate:
    """Lets a test hold a fake collaborator inside a call until it is released."""

    def __init__(self):
        self.entered = threading.Event()
        self.released = threading.Event()

    def pass_through(self):
        self.entered.set()
        assert self.released.wait(timeout=5)


class BlockingStore(FakeStore):
    def __init__(self):
        super().__init__()
        self.gate = Gate()

    def create_session(self, text, title=None):
        self.gate.pass_through()
        return super().create_session(text, title)


class BlockingGenerator(FakeGenerator):
    def __init__(self):
        super().__init__()
        self.gate = Gate()

    def generate(self, text_excerpt, difficulty='medium'):
        self.gate.pass_through()
        return super().generate(text_excerpt, difficulty)


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def engine():
    return BrowserSpeechEngine()


@pytest.fixture
def coordinator(store, generator, engine, timers):
    coordinator = SessionCoordinator(
        store=store,
        generator=generator,
        engine=engine,
        timer_factory=timers,
        executor=SyncExecutor()
    )
    yield coordinator
    coordinator.shutdown()


@pytest.fixture
def fake_llm_generator():
    return LLMQuizGenerator(
        api_key=None,
        model_name='test-model',
        client=FakeListChatModel(responses=[QUIZ_JSON]),
        rng=random.Random(7)
    )


@pytest.fixture
def app(timers, fake_llm_generator):
    def coordinator_factory(app):
        def factory(user_id):
            return SessionCoordinator(
                store=SqlSessionStore(app, user_id),
                generator=app.extensions['quiz_generator'],
                engine=BrowserSpeechEngine(),
                timer_factory=timers,
                executor=SyncExecutor()
            )
        return factory

    app = create_app('config.TestConfig', coordinator_factory=coordinator_factory)
    app.extensions['quiz_generator'] = fake_llm_generator

    yield app

    app.extensions['listen_coordinators'].shutdown()
    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    response = client.post('/auth/register', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})
    assert response.status_code == 201
    return client


@pytest.fixture
def user_id(auth_client):
    return auth_client.get('/auth/me').get_json()['user']['id']

