"""Shopify Admin GraphQL calls: file uploads, the submission metafield, and a ping.

Shopify reports most business failures as `userErrors` inside an HTTP 200
body, so every mutation result is inspected before it counts as a success.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings
from ..core.errors import ShopifyAPIError, ShopifyUserError
from ..core.models import UploadedImage

logger = logging.getLogger(__name__)

FILE_CREATE = """
mutation fileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) {
    files {
      id
      alt
      fileStatus
      ... on GenericFile { url }
      ... on MediaImage { image { url } }
    }
    userErrors { field message code }
  }
}
"""

METAFIELDS_SET = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id namespace key }
    userErrors { field message code }
  }
}
"""

SHOP_QUERY = """
query shopInfo {
  shop { id name myshopifyDomain }
}
"""


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:2000]


class ShopifyAdmin:
    """Narrow client over the Admin GraphQL API used by the submission flow."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client
        self._url = settings.graphql_url

    async def _execute(self, operation: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.post(self._url, json={"query": query, "variables": variables or {}})
        except httpx.TimeoutException as e:
            raise ShopifyAPIError(f"{operation} timed out", operation=operation) from e
        except httpx.RequestError as e:
            raise ShopifyAPIError(f"{operation} request failed: {e}", operation=operation) from e

        if response.is_error:
            raise ShopifyAPIError(
                f"{operation} returned HTTP {response.status_code}",
                operation=operation,
                status_code=response.status_code,
                response_body=_response_body(response),
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ShopifyAPIError(
                f"{operation} returned a non-JSON body",
                operation=operation,
                status_code=response.status_code,
                response_body=response.text[:2000],
            ) from e

        if payload.get("errors"):
            raise ShopifyAPIError(
                f"{operation} returned GraphQL errors",
                operation=operation,
                status_code=response.status_code,
                response_body={"errors": payload["errors"]},
            )
        result = (payload.get("data") or {}).get(operation)
        if result is None:
            raise ShopifyAPIError(
                f"{operation} returned no data",
                operation=operation,
                status_code=response.status_code,
                response_body=payload,
            )
        user_errors = result.get("userErrors") if isinstance(result, dict) else None
        if user_errors:
            raise ShopifyUserError(operation, user_errors, status_code=response.status_code)
        return result

    async def upload_image(
        self,
        data: bytes,
        content_type: str,
        filename: str,
        alt: Optional[str] = None,
    ) -> UploadedImage:
        """Create a shop file from raw image bytes and return its public URL."""
        file_input = {
            "originalSource": filename,
            "contentType": content_type,
            "filename": filename,
            "fileSize": len(data),
            "data": base64.b64encode(data).decode("ascii"),
        }
        if alt:
            file_input["alt"] = alt
        result = await self._execute("fileCreate", FILE_CREATE, {"files": [file_input]})

        files = result.get("files") or []
        first = files[0] if files else {}
        url = first.get("url") or (first.get("image") or {}).get("url")
        if not url:
            raise ShopifyAPIError(
                "fileCreate returned no URL",
                operation="fileCreate",
                status_code=200,
                response_body=result,
            )
        return UploadedImage(slot=alt or filename, url=url, id=first.get("id"))

    async def write_record(self, metafield: Dict[str, Any]) -> str:
        """Store the submission metafield on the shop and return its id."""
        result = await self._execute("metafieldsSet", METAFIELDS_SET, {"metafields": [metafield]})
        created = result.get("metafields") or []
        if not created or not created[0].get("id"):
            raise ShopifyAPIError(
                "metafieldsSet returned no metafield",
                operation="metafieldsSet",
                status_code=200,
                response_body=result,
            )
        logger.info(
            "Stored metafield id=%s namespace=%s key=%s",
            created[0]["id"], metafield.get("namespace"), metafield.get("key"),
        )
        return created[0]["id"]

    async def ping(self) -> Dict[str, Any]:
        """Fetch basic shop info to prove the token and domain work."""
        return await self._execute("shop", SHOP_QUERY)
