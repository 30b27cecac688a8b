"""
Configuration management for the Formless PDF-to-form service.
Loads AI, OCR, AWS and rate limit settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for extraction backends and API settings."""

    # Field inference
    EXTRACTION_STRATEGY: str = os.getenv('EXTRACTION_STRATEGY', 'ai').lower()

    # AI backend (gemini or an OpenAI-compatible endpoint)
    AI_PROVIDER: str = os.getenv('AI_PROVIDER', 'gemini').lower()
    GEMINI_API_KEY: Optional[str] = os.getenv('GEMINI_API_KEY')
    GEMINI_API_BASE: str = os.getenv('GEMINI_API_BASE', 'https://generativelanguage.googleapis.com/v1beta')
    GEMINI_MODEL: str = os.getenv('GEMINI_MODEL', 'gemini-1.5-flash')
    OPENAI_API_KEY: Optional[str] = os.getenv('OPENAI_API_KEY')
    OPENAI_API_BASE: str = os.getenv('OPENAI_API_BASE', 'https://api.openai.com/v1')
    OPENAI_MODEL: str = os.getenv('OPENAI_MODEL', 'gpt-4o')
    AI_TIMEOUT: int = int(os.getenv('AI_TIMEOUT', '60'))
    AI_TEMPERATURE: float = float(os.getenv('AI_TEMPERATURE', '0.3'))
    AI_MAX_OUTPUT_TOKENS: int = int(os.getenv('AI_MAX_OUTPUT_TOKENS', '2000'))

    # OCR
    OCR_BACKEND: str = os.getenv('OCR_BACKEND', 'tesseract').lower()
    OCR_LANGUAGE: str = os.getenv('OCR_LANGUAGE', 'eng')
    TESSERACT_CMD: Optional[str] = os.getenv('TESSERACT_CMD')
    OCR_TIMEOUT: int = int(os.getenv('OCR_TIMEOUT', '120'))
    SCAN_DPI: int = int(os.getenv('SCAN_DPI', '200'))

    # AWS Credentials (Textract OCR backend)
    AWS_PROFILE: Optional[str] = os.getenv('AWS_PROFILE')
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv('AWS_SECRET_ACCESS_KEY')
    AWS_SESSION_TOKEN: Optional[str] = os.getenv('AWS_SESSION_TOKEN')
    AWS_REGION: str = os.getenv('AWS_REGION', 'us-east-1')

    # Uploads
    MAX_UPLOAD_BYTES: int = int(os.getenv('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))

    # Rate Limiting (per client, per action, fixed window)
    ENABLE_RATE_LIMITING: bool = os.getenv('ENABLE_RATE_LIMITING', 'true').lower() == 'true'
    RATE_LIMIT_REQUESTS: int = int(os.getenv('RATE_LIMIT_REQUESTS', '100'))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv('RATE_LIMIT_WINDOW_SECONDS', str(15 * 60)))
    RATE_LIMIT_SWEEP_INTERVAL: int = int(os.getenv('RATE_LIMIT_SWEEP_INTERVAL', '60'))

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that enumerated settings hold supported values.
        """
        if cls.EXTRACTION_STRATEGY not in ('ai', 'heuristic'):
            raise ValueError(
                f"EXTRACTION_STRATEGY must be 'ai' or 'heuristic', got '{cls.EXTRACTION_STRATEGY}'"
            )

        if cls.AI_PROVIDER not in ('gemini', 'openai'):
            raise ValueError(f"AI_PROVIDER must be 'gemini' or 'openai', got '{cls.AI_PROVIDER}'")

        if cls.OCR_BACKEND not in ('tesseract', 'textract'):
            raise ValueError(f"OCR_BACKEND must be 'tesseract' or 'textract', got '{cls.OCR_BACKEND}'")

        # Check if temporary credentials (ASIA) are used without session token
        if cls.OCR_BACKEND == 'textract' and cls.AWS_ACCESS_KEY_ID and cls.AWS_ACCESS_KEY_ID.startswith('ASIA'):
            if not cls.AWS_SESSION_TOKEN:
                raise ValueError(
                    "Temporary credentials (ASIA) detected but AWS_SESSION_TOKEN is not set.\n"
                    "Temporary credentials require a session token to work."
                )

        if cls.RATE_LIMIT_REQUESTS <= 0 or cls.RATE_LIMIT_WINDOW_SECONDS <= 0:
            raise ValueError("RATE_LIMIT_REQUESTS and RATE_LIMIT_WINDOW_SECONDS must be positive")
        return True

    @classmethod
    def get_boto3_config(cls) -> dict:
        """
        Get AWS configuration dictionary for boto3.
        """
        config = {'region_name': cls.AWS_REGION}

        if cls.AWS_PROFILE:
            return {'profile_name': cls.AWS_PROFILE, 'region_name': cls.AWS_REGION}
        elif cls.AWS_ACCESS_KEY_ID and cls.AWS_SECRET_ACCESS_KEY:
            config.update({
                'aws_access_key_id': cls.AWS_ACCESS_KEY_ID,
                'aws_secret_access_key': cls.AWS_SECRET_ACCESS_KEY
            })
            if cls.AWS_SESSION_TOKEN:
                config['aws_session_token'] = cls.AWS_SESSION_TOKEN

        return config
