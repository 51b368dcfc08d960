# config.py
import os

from dotenv import load_dotenv

# Existing environment wins over .env entries
load_dotenv(override=False)

APP_DIR = os.path.dirname(os.path.abspath(__file__))

APP_HOST = os.getenv("APP_HOST", "127.0.0.1")
APP_PORT = int(os.getenv("APP_PORT", "8000"))

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o")
FALLBACK_MODEL = os.getenv("FALLBACK_MODEL", "gpt-4o")
DECISION_MODEL = os.getenv("DECISION_MODEL", "gpt-4o-mini")
SUMMARY_MODEL = os.getenv("SUMMARY_MODEL", "gpt-4o-mini")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "2000"))

TTS_MODEL = os.getenv("TTS_MODEL", "tts-1")
TTS_VOICE = os.getenv("TTS_VOICE", "nova")
TTS_MAX_CHARS = 4096  # OpenAI speech input limit

JINA_READER_URL = os.getenv("JINA_READER_URL", "https://r.jina.ai").rstrip("/")
JINA_SEARCH_URL = os.getenv("JINA_SEARCH_URL", "https://s.jina.ai").rstrip("/")
JINA_API_KEY = os.getenv("JINA_API_KEY", "")

URL_CHAR_BUDGET = int(os.getenv("URL_CHAR_BUDGET", "6000"))
SEARCH_CHAR_BUDGET = int(os.getenv("SEARCH_CHAR_BUDGET", "6000"))
MAX_URLS_PER_MESSAGE = 2
SEARCH_RETRIES = 2
SEARCH_RETRY_DELAY = 1.0
DECISION_QUERY_MAX_CHARS = 100

SUMMARY_WINDOW = 20
HISTORY_WINDOW_MESSAGES = 40  # 20 cycles

UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "60"))

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Europe/Rome")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TIMEZONE = os.getenv("LOG_TIMEZONE") or None

AMICA_STORAGE = os.getenv("AMICA_STORAGE", os.path.join(os.path.expanduser("~"), ".amica_storage.json"))
AMICA_AUDIO_PLAYER = os.getenv("AMICA_AUDIO_PLAYER", "ffplay -nodisp -autoexit -loglevel quiet")
API_URL = os.getenv("AMICA_API", f"http://{APP_HOST}:{APP_PORT}")


def openai_api_key() -> str:
    # Read per call so a missing key surfaces at request time
    return os.getenv("OPENAI_API_KEY", "").strip()
