"""Async client and command-line tool for the Doc2X document parsing API."""

from doc2x.clients.doc2x_client import Doc2XClient
from doc2x.models.dto import ConvertFormat, ConvertRequest, FormulaMode
from doc2x.resilience.cancellation import CancelToken

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "ConvertFormat",
    "ConvertRequest",
    "Doc2XClient",
    "FormulaMode",
]
