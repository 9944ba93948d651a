"""
Typed contracts for Doc2X API requests and responses.

Every response model carries the server ``trace_id`` read from the response
headers. It is excluded from serialization so saved results contain only
what the API returned.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConvertFormat(str, Enum):
    """Conversion targets."""

    MARKDOWN = "md"
    TEX = "tex"
    DOCX = "docx"
    MD_DOLLAR = "md_dollar"

    def __str__(self) -> str:
        return self.value


class FormulaMode(str, Enum):
    """Formula rendering modes."""

    NORMAL = "normal"
    DOLLAR = "dollar"
    LATEX = "latex"

    def __str__(self) -> str:
        return self.value


class TaskStatus(str, Enum):
    """Known states of a parse, conversion or image layout task.

    Status fields on the models stay plain strings so states added by the
    API later are accepted and treated as pending.
    """

    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class Operation(str, Enum):
    """Labels used in error messages and log records."""

    PARSING = "parsing"
    CONVERSION = "conversion"
    IMAGE_LAYOUT = "image layout"
    UPLOAD_PDF = "upload PDF"
    PREUPLOAD = "preupload"
    UPLOAD_PRESIGNED = "upload to presigned URL"
    GET_STATUS = "get status"
    CONVERT_PARSE = "convert parse"
    GET_CONVERT_RESULT = "get convert result"
    PARSE_IMAGE_LAYOUT = "parse image layout"
    ASYNC_PARSE_IMAGE_LAYOUT = "async parse image layout"
    GET_IMAGE_LAYOUT_STATUS = "get image layout status"
    DOWNLOAD_FILE = "download file"
    FETCH_CONVERT_ZIP = "fetch convert_zip"

    def __str__(self) -> str:
        return self.value


class Doc2XModel(BaseModel):
    """Base for API payloads: unknown keys ignored, JSON nulls fall back to defaults."""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class APIResponse(Doc2XModel):
    """Envelope shared by all API responses: ``{"code", "msg", "data"}``."""

    code: str = ""
    msg: str = ""
    trace_id: str | None = Field(default=None, exclude=True)


# =============================================================================
# Parsing
# =============================================================================


class UploadData(Doc2XModel):
    uid: str = ""


class UploadResponse(APIResponse):
    data: UploadData | None = None


class PreUploadData(Doc2XModel):
    uid: str = ""
    url: str = ""


class PreUploadResponse(APIResponse):
    """Presigned upload slot for a new parse task."""

    data: PreUploadData | None = None


class ParsedPage(Doc2XModel):
    url: str = ""
    page_idx: int = 0
    page_width: int = 0
    page_height: int = 0
    md: str = ""


class ParseResult(Doc2XModel):
    version: str = ""
    pages: list[ParsedPage] = Field(default_factory=list)


class StatusData(Doc2XModel):
    progress: int = 0
    status: str = ""
    detail: str = ""
    result: ParseResult | None = None


class StatusResponse(APIResponse):
    """Parse task status. ``data.result`` is present once parsing succeeded."""

    data: StatusData | None = None

    @property
    def page_count(self) -> int:
        if self.data is None or self.data.result is None:
            return 0
        return len(self.data.result.pages)


# =============================================================================
# Conversion
# =============================================================================


class ConvertRequest(Doc2XModel):
    """Conversion of a parsed document into a downloadable format."""

    uid: str = ""
    to: Union[ConvertFormat, str] = ""
    formula_mode: Union[FormulaMode, str] = FormulaMode.LATEX
    filename: str = ""
    merge_cross_page_forms: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Request body; optional fields are omitted when unset."""
        payload: dict[str, Any] = {
            "uid": self.uid,
            "to": str(self.to),
            "formula_mode": str(self.formula_mode or FormulaMode.LATEX),
        }
        if self.filename:
            payload["filename"] = self.filename
        if self.merge_cross_page_forms:
            payload["merge_cross_page_forms"] = True
        return payload


class ConvertData(Doc2XModel):
    status: str = ""
    url: str = ""


class ConvertResponse(APIResponse):
    data: ConvertData | None = None


class ConvertResultResponse(APIResponse):
    """Conversion status. ``data.url`` is the download link once it succeeded."""

    data: ConvertData | None = None


# =============================================================================
# Image layout
# =============================================================================


class ImageLayoutPage(Doc2XModel):
    url: str = ""
    page_idx: int = 0
    page_width: int = 0
    page_height: int = 0
    md: str = ""


class ImageLayoutResult(Doc2XModel):
    pages: list[ImageLayoutPage] = Field(default_factory=list)


class ImageLayoutSyncData(Doc2XModel):
    convert_zip: str = ""
    result: ImageLayoutResult | None = None
    uid: str = ""


class ImageLayoutSyncResponse(APIResponse):
    data: ImageLayoutSyncData | None = None


class ImageLayoutAsyncData(Doc2XModel):
    uid: str = ""


class ImageLayoutAsyncResponse(APIResponse):
    data: ImageLayoutAsyncData | None = None


class ImageLayoutStatusData(Doc2XModel):
    status: str = ""
    detail: str = ""
    progress: int = 0
    result: ImageLayoutResult | None = None
    convert_zip: str = ""


class ImageLayoutStatusResponse(APIResponse):
    data: ImageLayoutStatusData | None = None
