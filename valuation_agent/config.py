"""
Configuration module for the valuation agent.
Reads configuration from environment variables and .env file.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration class that reads from environment variables."""

    def __init__(self):
        # LLM providers
        self.OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
        self.GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
        self.LLM_PROVIDER: Optional[str] = os.getenv("LLM_PROVIDER")
        self.LLM_MODEL: Optional[str] = os.getenv("LLM_MODEL")

        # Screenshot service
        self.SCREENSHOT_API_KEY: Optional[str] = os.getenv("SCREENSHOT_API_KEY")
        self.SCREENSHOT_API_URL: str = os.getenv("SCREENSHOT_API_URL", "https://api.screenshotone.com/take")

        self.HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "15.0"))

        # Controller behaviour
        self.MATCH_THRESHOLD: float = float(os.getenv("MATCH_THRESHOLD", "80"))
        self.AUTO_INTERVAL_SECONDS: float = float(os.getenv("AUTO_INTERVAL_SECONDS", "10"))
        self.ALLOW_OVERLAPPING_RUNS: bool = _as_bool(os.getenv("ALLOW_OVERLAPPING_RUNS"))
        self.FILL_EMPTY_SUGGESTIONS: bool = _as_bool(os.getenv("FILL_EMPTY_SUGGESTIONS"))
        self.VALUATION_API_URL: str = os.getenv("VALUATION_API_URL", "http://localhost:8000")


# Global config instance
cfg = Config()
