import logging
import threading

from .coordinator import SessionCoordinator
from .session_store import SqlSessionStore
from .speech import BrowserSpeechEngine

logger = logging.getLogger(__name__)


class CoordinatorRegistry:
    """Keeps one live playback coordinator per signed-in user, keyed by user id."""

    def __init__(self, factory):
        self._factory = factory
        self._lock = threading.Lock()
        self._coordinators = {}

    def get(self, user_id):
        with self._lock:
            coordinator = self._coordinators.get(user_id)
            if coordinator is None:
                coordinator = self._factory(user_id)
                self._coordinators[user_id] = coordinator
                logger.debug("Created playback coordinator for user %s", user_id)
            return coordinator

    def discard(self, user_id):
        with self._lock:
            coordinator = self._coordinators.pop(user_id, None)
        if coordinator is not None:
            coordinator.shutdown()

    def shutdown(self):
        with self._lock:
            coordinators, self._coordinators = list(self._coordinators.values()), {}
        for coordinator in coordinators:
            coordinator.shutdown()


def default_coordinator_factory(app):
    """Wires each user's coordinator to their sessions, the app's quiz generator and a browser engine."""
    config = app.config

    def factory(user_id):
        return SessionCoordinator(
            store=SqlSessionStore(app, user_id),
            generator=app.extensions['quiz_generator'],
            engine=BrowserSpeechEngine.from_config(config),
            quiz_interval_minutes=config.get('QUIZ_INTERVAL_MINUTES', 2),
            difficulty=config.get('QUIZ_DIFFICULTY', 'medium'),
            speed=config.get('DEFAULT_PLAYBACK_SPEED', 1.0)
        )
    return factory
