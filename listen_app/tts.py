import os
import base64
import hashlib
import logging
from xml.sax.saxutils import escape

import requests
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

logger = logging.getLogger(__name__)

API_URL = "https://api.sws.speechify.com/v1/audio/speech"
REQUEST_TIMEOUT = 30


def prosody_rate(rate):
    """Converts a playback multiplier (1.25) into an SSML relative rate ("+25.0%")."""
    return f"{(rate - 1.0) * 100:+.1f}%"


def chunk_audio_path(audio_dir, text, rate, voice_id):
    """Chunks with identical text, rate and voice share one cached file."""
    digest = hashlib.sha256(f"{voice_id}|{rate:.2f}|{text}".encode('utf-8')).hexdigest()[:24]
    return os.path.join(audio_dir, f"chunk_{digest}.wav")


def get_audio_duration(file_path):
    """
    Calculates the duration of an audio file in seconds using pydub.

    Returns 0.0 if the file cannot be decoded.
    """
    try:
        audio = AudioSegment.from_file(file_path)
        return len(audio) / 1000.0  # pydub measures in milliseconds
    except CouldntDecodeError:
        logger.warning("Could not decode audio file: %s", file_path)
        return 0.0
    except OSError as e:
        logger.warning("Could not calculate duration for %s: %s", file_path, e)
        return 0.0


def generate_speech_file(text, rate, voice_id, token, audio_dir, model="simba-multilingual"):
    """
    Renders one utterance to a WAV file through Speechify's REST API.

    Returns ``(file_path, status)`` where status is 'created', 'skipped' (already
    cached on disk) or 'failed'.
    """
    if not token:
        logger.debug("Speechify API token is not configured.")
        return None, 'failed'

    os.makedirs(audio_dir, exist_ok=True)
    file_path = chunk_audio_path(audio_dir, text, rate, voice_id)

    if os.path.exists(file_path):
        return file_path, 'skipped'

    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json"
    }

    ssml_input = f"""
    <speak>
        <prosody rate="{prosody_rate(rate)}">
            {escape(text)}
        </prosody>
    </speak>
    """

    payload = {
        "input": ssml_input,
        "voice_id": voice_id,
        "model": model,
        "audio_format": "wav"
    }

    try:
        response = requests.post(API_URL, json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.warning("A network error occurred while generating speech: %s", e)
        return None, 'failed'

    if response.status_code != 200:
        logger.warning("Failed to generate audio. Status: %s, Response: %s", response.status_code, response.text)
        return None, 'failed'

    audio_data_b64 = response.json().get("audio_data")
    if not audio_data_b64:
        logger.warning("Speechify response carried no audio_data.")
        return None, 'failed'

    with open(file_path, 'wb') as f:
        f.write(base64.b64decode(audio_data_b64))
    logger.info("Generated chunk audio %s", os.path.basename(file_path))
    return file_path, 'created'
