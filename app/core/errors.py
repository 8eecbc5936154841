"""Error taxonomy for the form relay.

Client input problems map to 4xx responses, everything raised while talking
to Shopify or the mail relay maps to 500.
"""

from typing import Any, Dict, List, Optional


class FormRelayError(Exception):
    """Base exception for the service."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(FormRelayError):
    """Required configuration is missing or invalid."""

    def __init__(self, missing: List[str], message: Optional[str] = None) -> None:
        self.missing = list(missing)
        super().__init__(message or "missing required configuration: " + ", ".join(self.missing))


class SubmissionValidationError(FormRelayError):
    """The submitted form cannot be accepted (reported as HTTP 400)."""

    def __init__(self, code: str, message: str, fields: Optional[List[str]] = None) -> None:
        self.code = code
        self.fields = list(fields or [])
        super().__init__(message)


class ImageDecodeError(FormRelayError):
    """An image payload is empty, not base64, or not a recognised image."""


class ShopifyAPIError(FormRelayError):
    """A call to the Shopify Admin API failed in transport or at the GraphQL layer."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.response_body = response_body

    def details(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "statusCode": self.status_code,
            "response": self.response_body,
        }


def _field_path(field: Any) -> str:
    if not field:
        return "-"
    if isinstance(field, str):
        return field
    return ".".join(str(part) for part in field)


class ShopifyUserError(ShopifyAPIError):
    """Shopify answered 200 but reported userErrors for the mutation."""

    def __init__(self, operation: str, user_errors: List[Dict[str, Any]], status_code: int = 200) -> None:
        self.user_errors = list(user_errors)
        summary = "; ".join(f"{_field_path(e.get('field'))}: {e.get('message')}" for e in self.user_errors)
        super().__init__(
            f"{operation} returned user errors: {summary}",
            operation=operation,
            status_code=status_code,
            response_body={"userErrors": self.user_errors},
        )


class NotificationError(FormRelayError):
    """The notification email could not be delivered to the relay."""
