"""Decoding submitted images and relaying them to Shopify one at a time."""

import base64
import binascii
import logging
import re
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import FormRelayError, ImageDecodeError, ShopifyAPIError
from .models import ImageAttachment, UploadBatchResult, UploadedImage, UploadFailure

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.+-]+)*;base64,", re.IGNORECASE)

KNOWN_SLOTS = ("front", "back", "accessories")

FORMAT_TYPES = {
    "JPEG": ("image/jpeg", ".jpg"),
    "PNG": ("image/png", ".png"),
    "GIF": ("image/gif", ".gif"),
    "WEBP": ("image/webp", ".webp"),
}

EXT_BY_MIME = {mime: ext for mime, ext in FORMAT_TYPES.values()}


class ImageUploader(Protocol):
    async def upload_image(self, data: bytes, content_type: str, filename: str, alt: Optional[str] = None) -> UploadedImage:
        ...


def split_data_uri(value: str) -> Tuple[Optional[str], str]:
    """Return (declared mime type, bare base64) for a data URI or plain base64 string."""
    value = value.strip()
    match = DATA_URI_RE.match(value)
    if not match:
        return None, value
    return match.group("mime"), value[match.end():]


def decode_base64_image(value: str) -> Tuple[bytes, Optional[str]]:
    """Decode a base64 image, with or without a `data:image/...;base64,` prefix."""
    if not isinstance(value, str):
        raise ImageDecodeError("image_not_a_string")
    declared, payload = split_data_uri(value)
    payload = "".join(payload.split())
    if not payload:
        raise ImageDecodeError("empty_image_data")
    # Browsers occasionally drop trailing padding
    payload += "=" * (-len(payload) % 4)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ImageDecodeError("invalid_base64")
    if not data:
        raise ImageDecodeError("empty_image_data")
    return data, declared


def sniff_image(data: bytes, declared: Optional[str] = None) -> Tuple[str, str]:
    """Identify the image with Pillow and return (content type, file extension)."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError):
        raise ImageDecodeError("unsupported_image_type")
    if fmt in FORMAT_TYPES:
        return FORMAT_TYPES[fmt]
    mime = Image.MIME.get(fmt) or declared
    if not mime or not mime.startswith("image/"):
        raise ImageDecodeError("unsupported_image_type")
    return mime, EXT_BY_MIME.get(mime, "." + fmt.lower())


def attachment_from_base64(slot: str, value: str) -> ImageAttachment:
    data, declared = decode_base64_image(value)
    content_type, ext = sniff_image(data, declared)
    return ImageAttachment(slot=slot, data=data, content_type=content_type, filename=f"{slot}-image{ext}")


def attachment_from_upload(slot: str, data: bytes, filename: Optional[str], content_type: Optional[str]) -> ImageAttachment:
    if not data:
        raise ImageDecodeError("empty_image_data")
    sniffed_type, ext = sniff_image(data, content_type)
    name = filename or f"{slot}-image{ext}"
    return ImageAttachment(slot=slot, data=data, content_type=sniffed_type, filename=name)


def prepare_base64_images(images: Dict[str, Any]) -> Tuple[List[ImageAttachment], List[UploadFailure]]:
    """Decode a slot -> base64 mapping; blank slots are skipped, bad ones rejected."""
    attachments: List[ImageAttachment] = []
    rejected: List[UploadFailure] = []
    for slot, value in images.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        try:
            attachments.append(attachment_from_base64(str(slot), value))
        except ImageDecodeError as e:
            logger.warning("Rejected image slot=%s error=%s", slot, e.message)
            rejected.append(UploadFailure(slot=str(slot), error=e.message))
    return attachments, rejected


def slot_for_upload(filename: Optional[str], position: int, taken: Iterable[str] = ()) -> str:
    """Known slot name from the file stem, else `image<position>`."""
    stem = (filename or "").rsplit("/", 1)[-1].rsplit(".", 1)[0].strip().lower()
    taken = set(taken)
    if stem in KNOWN_SLOTS and stem not in taken:
        return stem
    slot = f"image{position}"
    while slot in taken:
        position += 1
        slot = f"image{position}"
    return slot


async def relay_images(
    uploader: ImageUploader,
    attachments: Iterable[ImageAttachment],
    rejected: Iterable[UploadFailure] = (),
) -> UploadBatchResult:
    """Upload each attachment in order, recording failures instead of stopping.

    `rejected` carries images that already failed to decode at ingress so the
    batch result accounts for every submitted slot.
    """
    result = UploadBatchResult(failed=list(rejected))
    for attachment in attachments:
        logger.info("Uploading image slot=%s size=%d type=%s", attachment.slot, attachment.size, attachment.content_type)
        try:
            uploaded = await uploader.upload_image(
                attachment.data,
                attachment.content_type,
                attachment.filename,
                alt=attachment.slot,
            )
        except ShopifyAPIError as e:
            logger.warning(
                "Image upload failed slot=%s operation=%s status=%s response=%s",
                attachment.slot, e.operation, e.status_code, e.response_body,
            )
            result.failed.append(UploadFailure(slot=attachment.slot, error=e.message, details=e.details()))
            continue
        except FormRelayError as e:
            logger.warning("Image upload failed slot=%s error=%s", attachment.slot, e.message)
            result.failed.append(UploadFailure(slot=attachment.slot, error=e.message))
            continue
        logger.info("Uploaded image slot=%s url=%s", attachment.slot, uploaded.url)
        result.succeeded.append(uploaded.model_copy(update={"slot": attachment.slot}))
    return result
