"""
Taleweave Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


class Config:
    """Application configuration loaded from environment variables."""

    # Text generation provider: "mock", "local" (Ollama) or a mirascope provider name
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "mock")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-3.5-turbo")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local Ollama server
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Generation options
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "1000"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    LLM_RETRIES: int = int(os.getenv("LLM_RETRIES", "3"))
    # Minimum spacing between consecutive provider calls
    LLM_RATE_LIMIT_DELAY_MS: int = int(os.getenv("LLM_RATE_LIMIT_DELAY_MS", "1000"))

    # Session limits
    MAX_HISTORY_LENGTH: int = int(os.getenv("MAX_HISTORY_LENGTH", "1000"))
    MAX_MEMORIES: int = int(os.getenv("MAX_MEMORIES", "1000"))
    MEMORY_DECAY_RATE: float = float(os.getenv("MEMORY_DECAY_RATE", "0.05"))

    # Seed for the response policy's random source (unset = unseeded)
    RESPONSE_SEED: int | None = _optional_int("RESPONSE_SEED")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SAVES_DIR: Path = PROJECT_ROOT / "saves"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For a local model, set LLM_PROVIDER=local and OLLAMA_BASE_URL instead."
            )

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.MAX_HISTORY_LENGTH <= 0 or cls.MAX_MEMORIES <= 0:
            raise ValueError("MAX_HISTORY_LENGTH and MAX_MEMORIES must be positive")

        if cls.LLM_RATE_LIMIT_DELAY_MS < 0:
            raise ValueError("LLM_RATE_LIMIT_DELAY_MS cannot be negative")

        if cls.LLM_RETRIES < 0:
            raise ValueError("LLM_RETRIES cannot be negative")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Taleweave Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Timeout: {cls.LLM_TIMEOUT_SECONDS}s, retries: {cls.LLM_RETRIES}",
            f"  Rate limit delay: {cls.LLM_RATE_LIMIT_DELAY_MS}ms",
            f"  History capacity: {cls.MAX_HISTORY_LENGTH}",
            f"  Memory capacity: {cls.MAX_MEMORIES} (decay {cls.MEMORY_DECAY_RATE})",
        ]
        return "\n".join(lines)
