"""Python client for the cellar API, with cached query hooks."""

from src.cellar.client.api_client import ApiError, CellarApiClient
from src.cellar.client.hooks import QueryCache, QueryState, ResourceHooks, query_key

__all__ = ["ApiError", "CellarApiClient", "QueryCache", "QueryState", "ResourceHooks", "query_key"]
