"""
Configuration module for HipoTrack.
Stores backend endpoints, credentials and messaging settings.
"""

import os
from typing import Dict, Any

from HipoTrack.core.client.utils.constants import DEFAULT_ATTACHMENT_BUCKET


class Config:
    """Application configuration class."""

    # Supabase project
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    # Signed-in user's JWT; falls back to the anon key when unset
    SUPABASE_ACCESS_TOKEN = os.environ.get("SUPABASE_ACCESS_TOKEN") or None

    # Object storage
    ATTACHMENT_BUCKET = os.environ.get("HIPOTRACK_ATTACHMENT_BUCKET", DEFAULT_ATTACHMENT_BUCKET)

    # Viewer identity for the command-line runner
    USER_ID = os.environ.get("HIPOTRACK_USER_ID", "")
    USER_NAME = os.environ.get("HIPOTRACK_USER_NAME", "")
    USER_ROLE = os.environ.get("HIPOTRACK_USER_ROLE", "member")

    # Runtime environment (development, production, testing)
    ENVIRONMENT = os.environ.get("HIPOTRACK_ENV", "development")

    @classmethod
    def is_backend_configured(cls) -> bool:
        """Check whether the Supabase endpoint and key are both set."""
        return bool(cls.SUPABASE_URL and cls.SUPABASE_ANON_KEY)

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_ANON_KEY": cls.SUPABASE_ANON_KEY,
            "SUPABASE_ACCESS_TOKEN": cls.SUPABASE_ACCESS_TOKEN,
            "ATTACHMENT_BUCKET": cls.ATTACHMENT_BUCKET,
            "USER_ID": cls.USER_ID,
            "USER_NAME": cls.USER_NAME,
            "USER_ROLE": cls.USER_ROLE,
            "ENVIRONMENT": cls.ENVIRONMENT,
        }


# Create config instance
config = Config()
