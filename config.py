import os
from dotenv import load_dotenv

# Load environment variables from a .env file
load_dotenv()

# Define base directory for the project
BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DB_DIR = os.path.join(BASE_DIR, 'database')

# Ensure the database directory exists before the app uses it
if not os.path.exists(DB_DIR):
    os.makedirs(DB_DIR)

class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'a_default_secret_key_for_development')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
    PASSWORD_MIN_LENGTH = int(os.environ.get('PASSWORD_MIN_LENGTH', 6))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Database configuration using an absolute path
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', f'sqlite:///{os.path.join(DB_DIR, "listen.db")}')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # OpenRouter LLM Configuration
    OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY")
    OPENROUTER_MAX_RETRIES = int(os.environ.get("OPENROUTER_MAX_RETRIES", 3))

    # Model used to write the multiple-choice comprehension questions
    QUIZ_MODEL = os.environ.get("QUIZ_MODEL", "openai/gpt-4o-mini")
    QUIZ_TEMPERATURE = float(os.environ.get("QUIZ_TEMPERATURE", 0.7))
    QUIZ_DIFFICULTY = os.environ.get("QUIZ_DIFFICULTY", "medium")

    # Playback defaults
    QUIZ_INTERVAL_MINUTES = float(os.environ.get("QUIZ_INTERVAL_MINUTES", 2))
    DEFAULT_PLAYBACK_SPEED = float(os.environ.get("DEFAULT_PLAYBACK_SPEED", 1.0))

    # Speechify TTS Configuration, optional: without a token the browser speaks the chunks itself
    SPEECHIFY_API_TOKEN = os.environ.get('SPEECHIFY_API_TOKEN')
    SPEECHIFY_MODEL = os.environ.get('SPEECHIFY_MODEL', 'simba-multilingual')
    SPEECHIFY_DEFAULT_VOICE = os.environ.get('SPEECHIFY_DEFAULT_VOICE', 'raphael')
    TTS_AUDIO_DIR = os.environ.get("TTS_AUDIO_DIR", os.path.join(BASE_DIR, 'listen_app', 'static', 'audio', 'tts'))


class TestConfig(Config):
    """Configuration used by the test suite."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    JWT_COOKIE_SECURE = False
    OPENROUTER_API_KEY = None
    SPEECHIFY_API_TOKEN = None
