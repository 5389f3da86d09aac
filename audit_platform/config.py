"""Configuration settings for the analyzer, read from the environment / .env."""

import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# OpenAI API Settings
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.2"))
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "2000"))

# HTTP layer: when set, every /api route requires "Authorization: Bearer <token>"
AUDIT_API_TOKEN = os.getenv("AUDIT_API_TOKEN")
DEFAULT_TENANT_ID = "default"
DEFAULT_SESSION_ID = "anonymous"

# Session store
SESSION_TTL_SECONDS = float(os.getenv("SESSION_TTL_SECONDS", "3600"))
SESSION_MAX_ENTRIES = int(os.getenv("SESSION_MAX_ENTRIES", "1000"))

# Document handling
MAX_DOC_CHUNKS = 6
DOC_CHUNK_SIZE = 6000
MAX_POLICY_CHARS = 4000
MAX_CONTEXT_CHARS = 8000
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging once; quiets chatty HTTP client/server loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
