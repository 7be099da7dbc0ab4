import os
import logging
from dotenv import load_dotenv

# Load .env
load_dotenv()

class Settings:
    """
    Application settings and environment variables.
    """
    # Persistence
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coach.db")

    # Provider credentials
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")  # openai | gemini

    # Model tiers used by the model router
    MODEL_PREMIUM = os.getenv("MODEL_PREMIUM", "gpt-4.1-2025-04-14")
    MODEL_REASONING = os.getenv("MODEL_REASONING", "o4-mini-2025-04-16")
    MODEL_BALANCED = os.getenv("MODEL_BALANCED", "gpt-4o")
    MODEL_LIGHTWEIGHT = os.getenv("MODEL_LIGHTWEIGHT", "gpt-4.1-mini-2025-04-14")
    INTENT_MODEL = os.getenv("INTENT_MODEL", "gemini-2.0-flash-lite")

    MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "1200"))

    # Single-coach deployment: state is keyed by this coach unless told otherwise
    DEFAULT_COACH_ID = os.getenv("DEFAULT_COACH_ID", "ares")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        """
        Checks that the provider credentials are present.
        """
        missing = []
        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")
        if not cls.GOOGLE_API_KEY:
            missing.append("GOOGLE_API_KEY")

        if missing:
            raise ValueError(f"Missing environment variables: {', '.join(missing)}")

# Validate on import; the coach still runs on the regex classifier without keys
try:
    Settings.validate()
except ValueError as e:
    logging.warning(f"{e}")
