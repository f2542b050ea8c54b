"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes
MAX_NAME_LENGTH = 20
MAX_CHAT_LENGTH = 300

# --- Sessions ---
DEFAULT_SESSION_ID = "default"
MAX_SESSIONS = 50
MAX_PLAYERS_PER_SESSION = 100
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "1800"))
SESSION_CLEANUP_INTERVAL = 60  # seconds

# --- Game ---
ROUND_DURATION = float(os.getenv("ROUND_DURATION", "15"))  # seconds per round
TOTAL_ROUNDS = int(os.getenv("TOTAL_ROUNDS", "10"))
SETTLE_DELAY = float(os.getenv("SETTLE_DELAY", "2"))  # pause between rounds
RESET_DELAY = float(os.getenv("RESET_DELAY", "10"))  # final scoreboard hold
# False = derive time left from when the question was issued
TRUST_CLIENT_TIME_LEFT = _env_bool("TRUST_CLIENT_TIME_LEFT", True)

# --- Scoring ---
BASE_POINTS = 100
SPEED_BONUS_POINTS = 100

# --- Question bank ---
QUESTIONS_FILE = os.getenv(
    "QUESTIONS_FILE",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "questions.json"),
)
MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
