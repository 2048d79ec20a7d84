import os

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker/backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- OpenAI / slot extraction ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4.1-mini")
    OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT", "15"))

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    MESSAGING_TIMEOUT = float(os.environ.get("MESSAGING_TIMEOUT", "10"))

    # --- Locale ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Los_Angeles")

    # --- Conversation store ---
    CONVERSATION_TIMEOUT_MINUTES = _int("CONVERSATION_TIMEOUT_MINUTES", 10)
    CONVERSATION_HISTORY_LIMIT = _int("CONVERSATION_HISTORY_LIMIT", 10)
    CONVERSATION_SWEEP_SECONDS = _int("CONVERSATION_SWEEP_SECONDS", 60)

    # --- Reminder scheduler ---
    SCHEDULER_INTERVAL_SECONDS = _int("SCHEDULER_INTERVAL_SECONDS", 60)
    SCHEDULER_BACK_WINDOW_MINUTES = _int("SCHEDULER_BACK_WINDOW_MINUTES", 5)
    SCHEDULER_BATCH_LIMIT = _int("SCHEDULER_BATCH_LIMIT", 100)

    # --- Dialog validation ---
    MAX_HORIZON_DAYS = _int("MAX_HORIZON_DAYS", 365)

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
