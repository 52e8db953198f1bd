from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import MIN_IMAGE_LENGTH
from .errors import RequestValidationFailed

logger = logging.getLogger(__name__)


class TryOnRequest(BaseModel):
    """Body of a try-on request.

    ``personImageBase64``/``garmentImageBase64`` are the canonical field names.
    The widget's older ``userImage``/``clothImage`` pair is accepted as well.
    Values may be bare base64 or data URIs.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    person_image: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("personImageBase64", "userImage"),
    )
    garment_image: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("garmentImageBase64", "clothImage"),
    )


@dataclass
class RequestIssue:
    code: str
    field: str
    message: str


def evaluate_request(body: TryOnRequest) -> List[RequestIssue]:
    issues: List[RequestIssue] = []
    for field, label, value in (
        ("personImageBase64", "person", body.person_image),
        ("garmentImageBase64", "garment", body.garment_image),
    ):
        if not value or not isinstance(value, str):
            issues.append(
                RequestIssue(code="missing_image", field=field, message=f"The {label} image is required.")
            )
        elif len(value) < MIN_IMAGE_LENGTH:
            issues.append(
                RequestIssue(
                    code="image_too_small",
                    field=field,
                    message=f"The {label} image is invalid or too small to process.",
                )
            )
    return issues


def validate_request(body: TryOnRequest) -> TryOnRequest:
    """Raise ``RequestValidationFailed`` unless both images are usable."""
    issues = evaluate_request(body)
    if not issues:
        return body
    logger.info("Rejected try-on request: %s", ", ".join(issue.code for issue in issues))
    if any(issue.code == "missing_image" for issue in issues):
        raise RequestValidationFailed(
            "Both personImageBase64 (your photo) and garmentImageBase64 (cloth photo) are required."
        )
    raise RequestValidationFailed("One or both image files are invalid or too small to process.")
