"""Salesforce REST API integration."""

from .auth import SalesforceCredentials, TokenManager
from .client import SalesforceClient, create_client_from_env

__all__ = [
    "SalesforceCredentials",
    "TokenManager",
    "SalesforceClient",
    "create_client_from_env",
]
