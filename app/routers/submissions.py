import asyncio
import logging
import re
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ..core.config import Settings
from ..core.errors import FormRelayError, ImageDecodeError, ShopifyAPIError, SubmissionValidationError
from ..core.images import attachment_from_upload, prepare_base64_images, slot_for_upload
from ..core.models import ImageAttachment, Submission, SubmissionResponse, UploadFailure
from ..core.submission import SubmissionService, failure_stage
from ..shopify.admin import ShopifyAdmin

logger = logging.getLogger(__name__)

router = APIRouter(tags=["submissions"])

ParsedForm = Tuple[Submission, List[ImageAttachment], List[UploadFailure]]

IMAGE_FIELD_RE = re.compile(r"^images\[(?P<slot>[^\[\]]+)\]$")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_submission_service(request: Request) -> SubmissionService:
    return request.app.state.submission_service


def get_shopify_admin(request: Request) -> ShopifyAdmin:
    return request.app.state.shopify_admin


def _respond(status_code: int, body: SubmissionResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.payload())


def _rejected(e: SubmissionValidationError) -> JSONResponse:
    logger.info("Rejected form submission code=%s fields=%s", e.code, e.fields)
    return _respond(
        400,
        SubmissionResponse(success=False, message=e.message, error=e.code, missing_fields=e.fields or None),
    )


def _build_submission(fields: Dict[str, Any]) -> Submission:
    try:
        return Submission.model_validate(fields)
    except ValidationError as e:
        bad = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise SubmissionValidationError("invalid_fields", "Invalid field values: " + ", ".join(bad), bad)


async def _read_multipart(request: Request) -> ParsedForm:
    """Form bodies carry images as file parts, `images[<slot>]` fields or bare `images` text parts."""
    form = await request.form()
    fields: Dict[str, Any] = {}
    attachments: List[ImageAttachment] = []
    rejected: List[UploadFailure] = []
    encoded: Dict[str, str] = {}
    position = 0
    for key, value in form.multi_items():
        is_image_key = key == "images" or key.startswith("images[")
        if not is_image_key:
            if isinstance(value, str) and key not in fields:
                fields[key] = value
            continue

        position += 1
        taken = [a.slot for a in attachments] + [r.slot for r in rejected] + list(encoded)
        if isinstance(value, UploadFile):
            slot = slot_for_upload(value.filename, position, taken)
            data = await value.read()
            try:
                attachments.append(attachment_from_upload(slot, data, value.filename, value.content_type))
            except ImageDecodeError as e:
                logger.warning("Rejected image slot=%s filename=%s error=%s", slot, value.filename, e.message)
                rejected.append(UploadFailure(slot=slot, error=e.message))
            continue

        match = IMAGE_FIELD_RE.match(key)
        if key != "images" and not match:
            logger.warning("Ignoring nested image field %s", key)
            continue
        slot = match.group("slot") if match else slot_for_upload(None, position, taken)
        if slot in taken:
            slot = slot_for_upload(None, position, taken)
        encoded[slot] = value

    decoded, bad = prepare_base64_images(encoded)
    attachments.extend(decoded)
    rejected.extend(bad)
    return _build_submission(fields), attachments, rejected


async def _read_json(request: Request, strict: bool) -> ParsedForm:
    try:
        body = await request.json()
    except ValueError:
        if strict:
            raise SubmissionValidationError("invalid_json", "Request body is not valid JSON")
        body = {}
    if not isinstance(body, dict):
        raise SubmissionValidationError("invalid_json", "Request body must be a JSON object")

    images = body.pop("images", None) or {}
    if isinstance(images, list):
        images = {f"image{i}": v for i, v in enumerate(images, start=1)}
    if not isinstance(images, dict):
        raise SubmissionValidationError("invalid_images", "images must map slot names to base64 strings")
    attachments, rejected = prepare_base64_images(images)
    return _build_submission(body), attachments, rejected


async def read_submission(request: Request) -> ParsedForm:
    """Extract form fields and images from a multipart, urlencoded or JSON body."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        return await _read_multipart(request)
    return await _read_json(request, strict="json" in content_type)


@router.post(
    "/submit-form",
    response_model=SubmissionResponse,
    response_model_exclude_none=True,
    summary="Submit a valuation form",
    description=(
        "Accepts multipart form-data (up to 5 files under `images`) or JSON with an "
        "`images` object mapping slot names (front, back, accessories) to base64 or "
        "data-URI strings.\n\n"
        "Required: `firstName`, `lastName`, `email`, `phone`."
    ),
)
async def submit_form(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
    settings: Settings = Depends(get_settings),
):
    logger.info("Processing form submission")
    try:
        # Parse errors other than validation (e.g. the body size limit) go to the middleware
        submission, attachments, rejected = await read_submission(request)
    except SubmissionValidationError as e:
        return _rejected(e)

    try:
        outcome = await asyncio.wait_for(
            service.submit(submission, attachments, rejected),
            timeout=settings.submission_timeout,
        )
    except SubmissionValidationError as e:
        return _rejected(e)
    except asyncio.TimeoutError:
        logger.error("Form submission exceeded %.0fs deadline", settings.submission_timeout)
        return _respond(
            504,
            SubmissionResponse(
                success=False,
                message="Error processing form submission",
                error="submission_timeout",
            ),
        )
    except FormRelayError as e:
        details = e.details() if isinstance(e, ShopifyAPIError) else {"stage": failure_stage(e)}
        logger.error("Form submission failed stage=%s error=%s details=%s", failure_stage(e), e.message, details)
        return _respond(
            500,
            SubmissionResponse(
                success=False,
                message="Error processing form submission",
                error=e.message,
                details=details,
            ),
        )
    except Exception as e:
        logger.exception("Unexpected error processing form submission")
        return _respond(
            500,
            SubmissionResponse(success=False, message="Error processing form submission", error=str(e)),
        )

    return _respond(
        200,
        SubmissionResponse(
            success=True,
            message="Form submitted successfully!",
            uploaded_images=outcome.batch.urls,
            failed_images=[f.slot for f in outcome.batch.failed],
            record_id=outcome.record_id,
            notification_sent=outcome.notification_sent,
        ),
    )


@router.get("/test", summary="Check Shopify connectivity")
async def check_connection(admin: ShopifyAdmin = Depends(get_shopify_admin)):
    try:
        shop = await admin.ping()
    except ShopifyAPIError as e:
        logger.error("Shopify connectivity check failed: %s details=%s", e.message, e.details())
        return JSONResponse(
            status_code=502,
            content={"success": False, "message": "Shopify connection failed", "error": e.message, "details": e.details()},
        )
    return {"success": True, "message": "Shopify connection OK", "shop": shop}


@router.post("/test", summary="Echo what the form sent without calling Shopify")
async def echo_submission(request: Request):
    try:
        submission, attachments, rejected = await read_submission(request)
    except SubmissionValidationError as e:
        return _rejected(e)
    return {
        "success": True,
        "message": "Test submission received",
        "fields": sorted(k for k, v in submission.model_dump(by_alias=True).items() if v is not None),
        "images": [{"slot": a.slot, "contentType": a.content_type, "size": a.size} for a in attachments],
        "rejectedImages": [{"slot": r.slot, "error": r.error} for r in rejected],
        "missingFields": submission.missing_required(),
    }
