"""
Secret Manager service for retrieving Salesforce credentials.
"""

import logging
import os
from typing import Dict, Optional
from google.cloud import secretmanager

logger = logging.getLogger(__name__)

# Credential name -> secret name in Secret Manager
SALESFORCE_SECRETS = {
    "SALESFORCE_CLIENT_ID": "salesforce-client-id",
    "SALESFORCE_CLIENT_SECRET": "salesforce-client-secret",
    "SALESFORCE_USERNAME": "salesforce-username",
    "SALESFORCE_PASSWORD": "salesforce-password",
    "SALESFORCE_SECURITY_TOKEN": "salesforce-security-token",
    "SALESFORCE_REFRESH_TOKEN": "salesforce-refresh-token",
}


def credentials_from_env() -> Dict[str, str]:
    """Read Salesforce credentials from environment variables."""
    return {name: os.getenv(name, "") for name in SALESFORCE_SECRETS}


class SecretManagerService:
    """Service for retrieving secrets from Google Secret Manager."""

    def __init__(self, project_id: Optional[str] = None):
        """Initialize Secret Manager service."""
        self.project_id = project_id or os.getenv("GOOGLE_CLOUD_PROJECT")
        if not self.project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT environment variable must be set")

        self.client = secretmanager.SecretManagerServiceClient()
        self._cache: Dict[str, str] = {}

    def get_secret(self, secret_name: str, version: str = "latest") -> str:
        """Retrieve a secret value from Secret Manager."""
        cache_key = f"{secret_name}:{version}"

        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            secret_path = f"projects/{self.project_id}/secrets/{secret_name}/versions/{version}"
            response = self.client.access_secret_version(request={"name": secret_path})
            secret_value = response.payload.data.decode("UTF-8")

            self._cache[cache_key] = secret_value
            logger.info(f"Retrieved secret: {secret_name}")
            return secret_value

        except Exception as e:
            logger.error(f"Failed to retrieve secret {secret_name}: {e}")
            raise

    def get_salesforce_credentials(self) -> Dict[str, str]:
        """
        Get the Salesforce credentials.

        Secrets that are missing from Secret Manager fall back to the
        environment variable of the same name.
        """
        env_credentials = credentials_from_env()
        credentials = {}
        for name, secret_name in SALESFORCE_SECRETS.items():
            try:
                credentials[name] = self.get_secret(secret_name)
            except Exception as e:
                logger.warning(f"Secret {secret_name} unavailable, using environment: {e}")
                credentials[name] = env_credentials[name]
        return credentials
