"""
Configuration management for the JobFill field classification service.
Loads model, learning-store and verifier settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for classifier models, learning and the verifier."""

    # Learned pattern store
    LEARNED_PATTERNS_FILE: str = os.getenv('LEARNED_PATTERNS_FILE', 'cache/learned-patterns.json')
    # "development" auto-verifies newly learned patterns; "production" leaves them for review
    LEARNING_PHASE: str = os.getenv('LEARNING_PHASE', 'production').lower()

    # Local classifier models
    ENABLE_LOCAL_CLASSIFIER: bool = os.getenv('ENABLE_LOCAL_CLASSIFIER', 'true').lower() == 'true'
    ZERO_SHOT_MODEL: str = os.getenv('ZERO_SHOT_MODEL', 'MoritzLaurer/deberta-v3-large-zeroshot-v2.0')
    EMBEDDING_MODEL: str = os.getenv('EMBEDDING_MODEL', 'BAAI/bge-base-en-v1.5')
    USE_GPU: bool = os.getenv('USE_GPU', 'true').lower() == 'true'
    STAGE1_THRESHOLD: float = float(os.getenv('STAGE1_THRESHOLD', '0.45'))
    STAGE2_THRESHOLD: float = float(os.getenv('STAGE2_THRESHOLD', '0.60'))

    # Remote verifier (OpenAI-compatible chat completions)
    VERIFIER_API_KEY: Optional[str] = os.getenv('VERIFIER_API_KEY')
    VERIFIER_API_BASE: str = os.getenv('VERIFIER_API_BASE', 'https://api.openai.com/v1')
    VERIFIER_MODEL: str = os.getenv('VERIFIER_MODEL', 'gpt-4o-mini')
    VERIFIER_TIMEOUT: int = int(os.getenv('VERIFIER_TIMEOUT', '30'))

    # Rate Limiting
    MAX_VERIFIER_CALLS: int = int(os.getenv('MAX_VERIFIER_CALLS', '200'))
    # 0 disables the per-minute window
    VERIFIER_CALLS_PER_MINUTE: int = int(os.getenv('VERIFIER_CALLS_PER_MINUTE', '0'))
    ENABLE_RATE_LIMITING: bool = os.getenv('ENABLE_RATE_LIMITING', 'true').lower() == 'true'

    # Applicant profile
    PROFILE_PATH: str = os.getenv('PROFILE_PATH', 'profile.json')

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that the configuration is consistent.
        """
        for name in ('STAGE1_THRESHOLD', 'STAGE2_THRESHOLD'):
            value = getattr(cls, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

        if cls.LEARNING_PHASE not in ('development', 'production'):
            raise ValueError(
                f"LEARNING_PHASE must be 'development' or 'production', got '{cls.LEARNING_PHASE}'"
            )

        if not cls.LEARNED_PATTERNS_FILE:
            raise ValueError("LEARNED_PATTERNS_FILE environment variable is required.")

        if cls.MAX_VERIFIER_CALLS < 0:
            raise ValueError("MAX_VERIFIER_CALLS must not be negative.")

        if cls.VERIFIER_CALLS_PER_MINUTE < 0:
            raise ValueError("VERIFIER_CALLS_PER_MINUTE must not be negative.")
        return True

    @classmethod
    def auto_verify_learned(cls) -> bool:
        """Whether newly learned patterns are marked verified on write."""
        return cls.LEARNING_PHASE == 'development'
