"""Terminal-state evaluators for the Doc2X status endpoints.

Each evaluator returns True once the task succeeded, False while it is still
pending and raises when the task reached a terminal failure. A response with
no ``data`` envelope is treated as pending.
"""

from doc2x.core.exceptions import InvalidResponseError, TaskFailedError
from doc2x.models.dto import (
    ConvertResultResponse,
    ImageLayoutStatusResponse,
    Operation,
    StatusResponse,
    TaskStatus,
)

UNKNOWN_FAILURE_DETAIL = "unknown error"


def evaluate_parse_status(status: StatusResponse) -> bool:
    if status.data is None:
        return False

    if status.data.status == TaskStatus.SUCCESS:
        return True

    if status.data.status == TaskStatus.FAILED:
        raise TaskFailedError(
            "parse",
            status.data.detail or UNKNOWN_FAILURE_DETAIL,
            trace_id=status.trace_id,
        )

    return False


def evaluate_conversion(result: ConvertResultResponse, uid: str = "") -> bool:
    """Conversion is done only once a download URL is available.

    Bind ``uid`` with ``functools.partial`` so the failure message names the task.
    """
    if result.data is None:
        return False

    if result.data.status == TaskStatus.SUCCESS:
        if not result.data.url:
            raise InvalidResponseError(
                str(Operation.CONVERSION),
                "conversion succeeded but no download URL provided",
                trace_id=result.trace_id,
            )
        return True

    if result.data.status == TaskStatus.FAILED:
        raise TaskFailedError(
            str(Operation.CONVERSION),
            f"conversion failed for UID: {uid}",
            uid=uid or None,
            trace_id=result.trace_id,
        )

    return False


def evaluate_image_layout(status: ImageLayoutStatusResponse) -> bool:
    if status.data is None:
        return False

    if status.data.status == TaskStatus.SUCCESS:
        return True

    if status.data.status == TaskStatus.FAILED:
        raise TaskFailedError(
            str(Operation.IMAGE_LAYOUT),
            status.data.detail or UNKNOWN_FAILURE_DETAIL,
            trace_id=status.trace_id,
        )

    return False
