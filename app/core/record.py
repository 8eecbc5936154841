"""Shaping a submission into the JSON metafield stored on the shop."""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import Settings
from .models import Submission, UploadBatchResult

CUSTOMER_FIELDS = ("firstName", "lastName", "email", "phone", "referralSource")

ITEM_FIELDS = (
    "category",
    "brand",
    "modelNo",
    "condition",
    "hasBox",
    "hasPapers",
    "itemType",
    "metalType",
    "diamondCarat",
    "goldKarat",
    "itemWeight",
    "askingPrice",
    "additionalInfo",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_record_document(
    submission: Submission,
    batch: UploadBatchResult,
    submitted_at: datetime,
) -> Dict[str, Any]:
    """Nest the form fields and uploaded image URLs into one document.

    `submitted_at` is the moment the record is written, not when the request
    arrived.
    """
    fields = submission.model_dump(by_alias=True)
    return {
        "customerInfo": {name: fields.get(name) for name in CUSTOMER_FIELDS},
        "itemDetails": {name: fields.get(name) for name in ITEM_FIELDS},
        "images": batch.by_slot,
        "imageUrls": batch.urls,
        "failedImages": [{"slot": f.slot, "error": f.error} for f in batch.failed],
        "extraFields": submission.extra_fields,
        "submittedAt": isoformat(submitted_at),
        "yearOfPurchase": fields.get("yearOfPurchase"),
    }


def record_key(base_key: str, moment: datetime, suffix: Optional[str] = None) -> str:
    """Unique metafield key per submission, e.g. valuation_form_20261018T120501_1a2b3c4d."""
    stamp = moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{base_key}_{stamp}_{suffix or uuid.uuid4().hex[:8]}"


def build_metafield_input(document: Dict[str, Any], settings: Settings, moment: datetime) -> Dict[str, Any]:
    return {
        "namespace": settings.metafield_namespace,
        "key": record_key(settings.metafield_key, moment),
        "type": "json",
        "value": json.dumps(document, ensure_ascii=False),
        "ownerId": settings.shop_gid,
    }
