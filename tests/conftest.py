import base64
import json
import os
import sys
from io import BytesIO

import httpx
import pytest
import respx
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root on sys.path so `import app...` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.core.config import Settings
from app.main import create_app


def png_bytes(size=(3, 2), color=(0, 128, 255)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def jpeg_bytes(size=(4, 4), color=(200, 10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def data_uri(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{b64(data)}"


def form_fields(**overrides) -> dict:
    fields = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "phone": "07700 900123",
        "referralSource": "Google",
        "category": "watch",
        "brand": "Rolex",
        "modelNo": "126610LN",
        "condition": "excellent",
        "hasBox": True,
        "hasPapers": False,
        "askingPrice": "9500",
        "additionalInfo": "Bought in London.",
        "yearOfPurchase": 2019,
    }
    fields.update(overrides)
    return fields


class FakeShopify:
    """Stands in for the Admin GraphQL endpoint behind respx."""

    def __init__(self):
        self.file_calls = []
        self.metafield_calls = []
        self.file_user_errors = {}
        self.metafield_user_errors = []
        self.metafield_status = 200

    @property
    def call_count(self) -> int:
        return len(self.file_calls) + len(self.metafield_calls)

    def stored_value(self, index: int = -1) -> dict:
        return json.loads(self.metafield_calls[index]["value"])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        query = payload["query"]
        variables = payload.get("variables") or {}
        if "fileCreate" in query:
            file_input = variables["files"][0]
            self.file_calls.append(file_input)
            errors = self.file_user_errors.get(file_input.get("alt"))
            if errors:
                return httpx.Response(200, json={"data": {"fileCreate": {"files": [], "userErrors": errors}}})
            n = len(self.file_calls)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "fileCreate": {
                            "files": [
                                {
                                    "id": f"gid://shopify/GenericFile/{n}",
                                    "alt": file_input.get("alt"),
                                    "fileStatus": "UPLOADED",
                                    "url": f"https://cdn.shopify.com/s/files/{file_input['filename']}",
                                }
                            ],
                            "userErrors": [],
                        }
                    }
                },
            )
        if "metafieldsSet" in query:
            metafield = variables["metafields"][0]
            self.metafield_calls.append(metafield)
            if self.metafield_status != 200:
                return httpx.Response(self.metafield_status, json={"errors": "Internal error"})
            if self.metafield_user_errors:
                return httpx.Response(
                    200,
                    json={"data": {"metafieldsSet": {"metafields": [], "userErrors": self.metafield_user_errors}}},
                )
            return httpx.Response(
                200,
                json={
                    "data": {
                        "metafieldsSet": {
                            "metafields": [
                                {
                                    "id": "gid://shopify/Metafield/777",
                                    "namespace": metafield["namespace"],
                                    "key": metafield["key"],
                                }
                            ],
                            "userErrors": [],
                        }
                    }
                },
            )
        if "shop" in query:
            return httpx.Response(
                200,
                json={"data": {"shop": {"id": "gid://shopify/Shop/42", "name": "Hearts", "myshopifyDomain": "hearts.myshopify.com"}}},
            )
        return httpx.Response(400, json={"errors": [{"message": "unknown query"}]})


class FakeSMTP:
    """Records messages instead of talking to a relay."""

    def __init__(self, outbox, fail_login=False):
        self.outbox = outbox
        self.fail_login = fail_login

    def __call__(self, host, port, timeout=None, context=None):
        self.host, self.port, self.timeout = host, port, timeout
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        if self.fail_login:
            import smtplib

            raise smtplib.SMTPAuthenticationError(535, b"5.7.8 Username and Password not accepted")
        self.credentials = (user, password)

    def send_message(self, msg):
        self.outbox.append(msg)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        shopify_access_token="shpat_test_token",
        shopify_shop_domain="hearts.myshopify.com",
        shop_id="42",
        email_user="forms@example.com",
        email_pass="app-password",
        notification_email="staff@example.com",
        smtp_host="smtp.example.com",
        smtp_port=465,
        smtp_starttls=False,
        cors_extra_origins=[],
    )


@pytest.fixture
def shopify(settings):
    fake = FakeShopify()
    with respx.mock(assert_all_called=False) as router:
        router.post(settings.graphql_url).mock(side_effect=fake)
        yield fake


@pytest.fixture
def outbox(monkeypatch):
    sent = []
    monkeypatch.setattr("app.mail.notifier.smtplib.SMTP_SSL", FakeSMTP(sent))
    return sent


@pytest.fixture
def client(settings, shopify, outbox):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c
