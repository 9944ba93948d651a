"""HTTP clients for the Doc2X API."""

from doc2x.clients.doc2x_client import Doc2XClient
from doc2x.clients.evaluators import (
    evaluate_conversion,
    evaluate_image_layout,
    evaluate_parse_status,
)

__all__ = [
    "Doc2XClient",
    "evaluate_conversion",
    "evaluate_image_layout",
    "evaluate_parse_status",
]
