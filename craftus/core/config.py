"""
Configuration management for Craftus
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


class Config:
    """Application configuration"""

    # Gemini
    GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY', '')
    GEMINI_IMAGE_MODEL: str = os.getenv('GEMINI_IMAGE_MODEL', 'gemini-3-pro-image-preview')
    GEMINI_ANALYSIS_MODEL: str = os.getenv('GEMINI_ANALYSIS_MODEL', 'gemini-2.5-flash')

    # Rate limiting (shared by every pipeline in the process)
    RATE_LIMIT_MAX_CALLS: int = int(os.getenv('RATE_LIMIT_MAX_CALLS', '10'))
    RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv('RATE_LIMIT_WINDOW_SECONDS', '60'))
    RATE_LIMIT_MAX_WAIT_SECONDS: Optional[float] = _optional_float('RATE_LIMIT_MAX_WAIT_SECONDS')

    # Retries
    RETRY_MAX_ATTEMPTS: int = int(os.getenv('RETRY_MAX_ATTEMPTS', '3'))
    RETRY_BASE_DELAY_SECONDS: float = float(os.getenv('RETRY_BASE_DELAY_SECONDS', '1.0'))

    # Pipeline
    MAX_STEP_IMAGES: int = int(os.getenv('MAX_STEP_IMAGES', '6'))
    REGION_PADDING_FRACTION: float = float(os.getenv('REGION_PADDING_FRACTION', '0.20'))

    # Logging
    LOG_LEVEL: str = os.getenv('CRAFTUS_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'GEMINI_API_KEY': cls.GEMINI_API_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        if cls.MAX_STEP_IMAGES < 1:
            raise ValueError(f"MAX_STEP_IMAGES must be at least 1, got {cls.MAX_STEP_IMAGES}")

        return True
