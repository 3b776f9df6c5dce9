"""
Speech engines driven by the playback coordinator.

An engine holds at most one utterance. ``speak`` replaces whatever was active
and ``cancel`` drops it; callbacks registered for a dropped utterance are never
invoked.
"""
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Callable, Optional

from .tts import generate_speech_file, get_audio_duration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Utterance:
    generation: int
    text: str
    start_word: int
    word_count: int
    rate: float
    voice_id: Optional[str] = None

    def to_dict(self):
        return asdict(self)


class SpeechEngine:
    """Interface every engine implements."""

    def speak(self, utterance: Utterance, on_complete: Callable[[], None], on_error: Callable[[Exception], None]):
        raise NotImplementedError

    def cancel(self):
        raise NotImplementedError


class BrowserSpeechEngine(SpeechEngine):
    """
    Publishes the active utterance for a polling browser.

    The browser speaks ``current()`` with its own speech synthesis (or plays the
    Speechify rendering from ``render_audio``) and reports back through
    ``report_complete``/``report_error`` quoting the utterance generation.
    """

    def __init__(self, speechify_token=None, audio_dir=None, default_voice='raphael', model='simba-multilingual'):
        self.speechify_token = speechify_token
        self.audio_dir = audio_dir
        self.default_voice = default_voice
        self.model = model
        self._lock = threading.Lock()
        self._active = None  # (utterance, on_complete, on_error)

    @classmethod
    def from_config(cls, config):
        return cls(
            speechify_token=config.get('SPEECHIFY_API_TOKEN'),
            audio_dir=config.get('TTS_AUDIO_DIR'),
            default_voice=config.get('SPEECHIFY_DEFAULT_VOICE', 'raphael'),
            model=config.get('SPEECHIFY_MODEL', 'simba-multilingual'),
        )

    @property
    def renders_audio(self):
        return bool(self.speechify_token and self.audio_dir)

    def speak(self, utterance, on_complete, on_error):
        with self._lock:
            self._active = (utterance, on_complete, on_error)
        logger.debug("Speaking generation %s (%d words)", utterance.generation, utterance.word_count)

    def cancel(self):
        with self._lock:
            self._active = None

    def current(self):
        with self._lock:
            return self._active[0] if self._active else None

    def _take(self, generation):
        with self._lock:
            if self._active is None or self._active[0].generation != generation:
                return None
            active, self._active = self._active, None
            return active

    def report_complete(self, generation):
        """Returns False when the generation no longer names the active utterance."""
        active = self._take(generation)
        if active is None:
            logger.info("Ignoring completion for stale utterance %s", generation)
            return False
        # Invoked outside our lock: the callback re-enters the coordinator, which may call speak().
        active[1]()
        return True

    def report_error(self, generation, message=None):
        active = self._take(generation)
        if active is None:
            logger.info("Ignoring error for stale utterance %s", generation)
            return False
        active[2](RuntimeError(message or "speech synthesis failed"))
        return True

    def render_audio(self, generation):
        """
        Renders the active utterance through Speechify.

        Returns ``(file_path, duration_seconds)`` or ``None`` when rendering is
        not configured, the generation is stale, or the API call failed.
        """
        utterance = self.current()
        if not self.renders_audio or utterance is None or utterance.generation != generation:
            return None

        file_path, status = generate_speech_file(
            utterance.text,
            utterance.rate,
            utterance.voice_id or self.default_voice,
            self.speechify_token,
            self.audio_dir,
            model=self.model
        )
        if status == 'failed':
            return None
        return file_path, get_audio_duration(file_path)
