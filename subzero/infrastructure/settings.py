"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
SUBZERO_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("SUBZERO_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
APP_BASE_URL = os.getenv("SUBZERO_APP_URL", "http://localhost:3000")

# Google OAuth (Gmail connect flow). Read again at first use by the OAuth service.
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "4096"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))

# Reminder cron
CRON_SECRET = os.getenv("SUBZERO_CRON_SECRET")

# include_granted_scopes lets Google answer with a wider scope set than requested;
# oauthlib rejects that unless relaxed. Set once for the process.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def is_production() -> bool:
    """Check if running in production"""
    return ENV == "production"


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"


def get_env(key: str, default: str | None = None) -> str | None:
    """Get environment variable with fallback"""
    return os.getenv(key, default)
