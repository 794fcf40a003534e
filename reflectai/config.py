"""
Configuration and loading secrets from GCP Secret Manager with fallback to environment variables.
"""

import os
import logging
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with GCP Secret Manager integration and environment variable fallback."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # GCP
    gcp_project_id: str = "reflectai-dev"
    use_secret_manager: bool = True
    openai_api_key_secret_name: str = "openai-api-key"
    jwt_secret_key_secret_name: str = "jwt-secret-key"

    # Resolved secrets
    openai_api_key: Optional[str] = None
    jwt_secret_key: Optional[str] = None

    # Completion service
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-3.5-turbo"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 150
    openai_timeout_seconds: float = 30.0

    # Storage
    database_url: str = "sqlite+aiosqlite:///./reflectai.db"

    # Journal behaviour
    default_user_id: Optional[str] = None
    recompute_on_update: bool = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.use_secret_manager:
            self._load_secrets()

    def _load_secrets(self) -> None:
        """Load secrets from Google Cloud Secret Manager with fallback to environment variables."""
        try:
            client = secretmanager.SecretManagerServiceClient()
            project_path = f"projects/{self.gcp_project_id}"
            logger.info("Loading application secrets from Google Secret Manager...")

            self.openai_api_key = self._get_secret_with_fallback(
                client, project_path, self.openai_api_key_secret_name, "OPENAI_API_KEY"
            ) or self.openai_api_key
            self.jwt_secret_key = self._get_secret_with_fallback(
                client, project_path, self.jwt_secret_key_secret_name, "JWT_SECRET_KEY"
            ) or self.jwt_secret_key
        except Exception as e:
            logger.warning(f"Could not load secrets from GCP Secret Manager: {e}")
            self.openai_api_key = self.openai_api_key or os.getenv("OPENAI_API_KEY")
            self.jwt_secret_key = self.jwt_secret_key or os.getenv("JWT_SECRET_KEY")

    def _get_secret_with_fallback(self, client, project_path: str, secret_name: str, env_var_name: str) -> str:
        try:
            secret_path = f"{project_path}/secrets/{secret_name}/versions/latest"
            response = client.access_secret_version(request={"name": secret_path})
            return response.payload.data.decode("UTF-8")
        except Exception as e:
            logger.warning(f"Could not fetch secret '{secret_name}' from GCP Secret Manager: {e}")
            env_value = os.getenv(env_var_name)
            if env_value:
                logger.info(f"Using environment variable {env_var_name} instead.")
                return env_value
            logger.warning(f"Neither GCP secret '{secret_name}' nor environment variable '{env_var_name}' found.")
            return ""

    def validate_secrets(self) -> bool:
        """Warn about missing secrets; the service still starts so reads keep working."""
        if not self.openai_api_key:
            logger.warning("OPENAI_API_KEY is not configured; analysis requests will fail.")
        if not self.jwt_secret_key:
            logger.warning("JWT_SECRET_KEY is not configured; authenticated requests will be rejected.")
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.validate_secrets()
    return settings
