"""Runs one submission through image relay, record write and notification."""

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Sequence

from .config import Settings
from .errors import NotificationError, SubmissionValidationError
from .images import ImageUploader, relay_images
from .models import ImageAttachment, Submission, SubmissionOutcome, UploadFailure
from .record import build_metafield_input, build_record_document, utcnow

logger = logging.getLogger(__name__)


class RecordWriter(Protocol):
    async def write_record(self, metafield: Dict[str, Any]) -> str:
        ...


class Notifier(Protocol):
    async def send_notification(self, submission: Submission, image_urls: Sequence[str]) -> None:
        ...


def validate_submission(submission: Submission, image_count: int, max_images: int) -> None:
    missing = submission.missing_required()
    if missing:
        raise SubmissionValidationError(
            "missing_required_fields",
            "Missing required fields: " + ", ".join(missing),
            missing,
        )
    unsafe = submission.header_unsafe_fields()
    if unsafe:
        raise SubmissionValidationError(
            "invalid_fields",
            "Line breaks are not allowed in: " + ", ".join(unsafe),
            unsafe,
        )
    if image_count > max_images:
        raise SubmissionValidationError(
            "too_many_images",
            f"At most {max_images} images may be submitted, got {image_count}",
        )


class SubmissionService:
    def __init__(
        self,
        settings: Settings,
        uploader: ImageUploader,
        writer: RecordWriter,
        notifier: Notifier,
        clock: Callable = utcnow,
    ) -> None:
        self._settings = settings
        self._uploader = uploader
        self._writer = writer
        self._notifier = notifier
        self._clock = clock

    async def submit(
        self,
        submission: Submission,
        attachments: Sequence[ImageAttachment] = (),
        rejected: Iterable[UploadFailure] = (),
    ) -> SubmissionOutcome:
        """Validate, upload images, store the record, then notify staff.

        Image failures are kept in the batch result. Record write errors always
        propagate; notifier errors propagate unless the policy is "warn".
        """
        rejected = list(rejected)
        validate_submission(submission, len(attachments) + len(rejected), self._settings.max_images)

        batch = await relay_images(self._uploader, attachments, rejected)
        if batch.failed:
            logger.warning(
                "Submission continuing with %d of %d images failed: %s",
                len(batch.failed),
                len(batch.failed) + len(batch.succeeded),
                ", ".join(f.slot for f in batch.failed),
            )

        submitted_at = self._clock()
        document = build_record_document(submission, batch, submitted_at)
        metafield = build_metafield_input(document, self._settings, submitted_at)
        record_id = await self._writer.write_record(metafield)

        outcome = SubmissionOutcome(batch=batch, record_id=record_id, record_key=metafield["key"])
        try:
            await self._notifier.send_notification(submission, batch.urls)
        except NotificationError as e:
            if self._settings.notify_failure_policy != "warn":
                raise
            logger.warning("Notification failed for record=%s: %s", record_id, e.message)
            return outcome
        outcome.notification_sent = True
        return outcome


def failure_stage(error: Exception) -> Optional[str]:
    operation = getattr(error, "operation", None)
    if operation:
        return operation
    if isinstance(error, NotificationError):
        return "notification"
    return None
