import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.datastructures import Headers

from .core.config import Settings, load_settings
from .core.models import HealthResponse
from .core.record import isoformat, utcnow
from .core.submission import SubmissionService
from .mail.notifier import SmtpNotifier
from .routers.submissions import router as submissions_router
from .shopify.admin import ShopifyAdmin
from .shopify.clients import graphql_client

logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "submissions",
        "description": (
            "Valuation form intake.\n\n"
            "- Images are uploaded to Shopify Files one by one; a failed image does not fail the form.\n"
            "- The submission is stored as a JSON metafield on the shop.\n"
            "- Staff get an HTML email with the details and image links."
        ),
    }
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )


class PayloadTooLarge(Exception):
    pass


class BodySizeLimitMiddleware:
    """Reject request bodies over `max_body_bytes`, declared or streamed."""

    def __init__(self, app, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def _reject(self, scope, receive, send) -> None:
        response = JSONResponse(
            status_code=413,
            content={
                "success": False,
                "message": f"Request body exceeds {self.max_body_bytes} bytes",
                "error": "payload_too_large",
            },
        )
        await response(scope, receive, send)

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_body_bytes:
            logger.warning("Rejected request path=%s content-length=%s", scope.get("path"), declared)
            await self._reject(scope, receive, send)
            return

        received = 0
        started = False

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    raise PayloadTooLarge()
            return message

        async def tracking_send(message):
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except PayloadTooLarge:
            if started:
                raise
            logger.warning("Rejected streamed request path=%s after %d bytes", scope.get("path"), received)
            await self._reject(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings.ensure_complete()
    client = graphql_client(settings)
    admin = ShopifyAdmin(settings, client)
    app.state.shopify_admin = admin
    app.state.submission_service = SubmissionService(settings, admin, admin, SmtpNotifier(settings))
    logger.info("Form relay ready shop=%s api=%s", settings.shopify_shop_domain, settings.shopify_api_version)
    try:
        yield
    finally:
        await client.aclose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Valuation Form Relay",
        description=(
            "How to Use:\n\n"
            "1) POST /submit-form with the valuation form as multipart form-data or JSON.\n"
            "2) GET /health for a liveness check.\n"
            "3) GET /test checks the Shopify token and domain; POST /test echoes what the form sent.\n\n"
            "Required configuration: SHOPIFY_ACCESS_TOKEN, SHOPIFY_SHOP_DOMAIN, SHOP_ID, "
            "EMAIL_USER, EMAIL_PASS, NOTIFICATION_EMAIL."
        ),
        openapi_tags=tags_metadata,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    # Credentials are allowed, so the matched origin is echoed back instead of "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Server is running!"

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="healthy", timestamp=isoformat(utcnow()))

    app.include_router(submissions_router)
    return app


app = create_app()


def run() -> None:
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)


if __name__ == "__main__":
    run()
