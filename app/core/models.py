from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Form values keep whatever JSON type the browser sent.
FormValue = Union[str, bool, int, float, None]

REQUIRED_FIELDS = ("firstName", "lastName", "email", "phone")
HEADER_FIELDS = ("email",)


class Submission(BaseModel):
    """One valuation form submission, minus its images."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    # Contact
    first_name: FormValue = None
    last_name: FormValue = None
    email: FormValue = None
    phone: FormValue = None
    referral_source: FormValue = None

    category: FormValue = None
    # Watch
    brand: FormValue = None
    model_no: FormValue = None
    condition: FormValue = None
    has_box: FormValue = None
    has_papers: FormValue = None
    # Jewellery
    item_type: FormValue = None
    metal_type: FormValue = None
    diamond_carat: FormValue = None
    # Gold
    gold_karat: FormValue = None
    item_weight: FormValue = None
    # Shared
    asking_price: FormValue = None
    additional_info: FormValue = None
    year_of_purchase: FormValue = None

    @property
    def full_name(self) -> str:
        return " ".join(str(p) for p in (self.first_name, self.last_name) if p is not None).strip()

    @property
    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def missing_required(self) -> List[str]:
        data = self.model_dump(by_alias=True)
        return [f for f in REQUIRED_FIELDS if data.get(f) is None or not str(data[f]).strip()]

    def header_unsafe_fields(self) -> List[str]:
        """Fields that end up in mail headers and contain CR or LF."""
        data = self.model_dump(by_alias=True)
        return [f for f in HEADER_FIELDS if isinstance(data.get(f), str) and ("\r" in data[f] or "\n" in data[f])]


class ImageAttachment(BaseModel):
    slot: str
    data: bytes
    content_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)


class UploadedImage(BaseModel):
    slot: str
    url: str
    id: Optional[str] = None


class UploadFailure(BaseModel):
    slot: str
    error: str
    details: Optional[Any] = None


class UploadBatchResult(BaseModel):
    """Outcome of relaying a batch of images: every slot lands in exactly one list."""

    succeeded: List[UploadedImage] = Field(default_factory=list)
    failed: List[UploadFailure] = Field(default_factory=list)

    @property
    def urls(self) -> List[str]:
        return [img.url for img in self.succeeded]

    @property
    def by_slot(self) -> Dict[str, str]:
        return {img.slot: img.url for img in self.succeeded}


class SubmissionOutcome(BaseModel):
    batch: UploadBatchResult
    record_id: Optional[str] = None
    record_key: Optional[str] = None
    notification_sent: bool = False


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message: str
    uploaded_images: Optional[List[str]] = None
    failed_images: Optional[List[str]] = None
    record_id: Optional[str] = None
    notification_sent: Optional[bool] = None
    error: Optional[str] = None
    missing_fields: Optional[List[str]] = None
    details: Optional[Any] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class HealthResponse(BaseModel):
    status: str
    timestamp: str
