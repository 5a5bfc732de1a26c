import os
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # CORS for the JSON api; comma separated, "*" allows any origin
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # One-time passwords expire after 10 minutes by default
    OTP_TTL_SECONDS = int(os.environ.get("OTP_TTL_SECONDS", 600))
    OTP_LENGTH = int(os.environ.get("OTP_LENGTH", 6))

    DEBUG = _as_bool(os.environ.get("DEBUG", "false"))
    PORT = int(os.environ.get("PORT", 5000))

config = Config()
