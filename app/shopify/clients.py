from typing import Dict

import httpx

from ..core.config import Settings


def shopify_headers(settings: Settings) -> Dict[str, str]:
    return {
        "X-Shopify-Access-Token": settings.shopify_access_token or "",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def graphql_client(settings: Settings) -> httpx.AsyncClient:
    """Create an async client for the shop's Admin GraphQL endpoint.

    The caller owns the client and must close it.
    """
    return httpx.AsyncClient(
        headers=shopify_headers(settings),
        timeout=httpx.Timeout(settings.shopify_timeout),
    )
