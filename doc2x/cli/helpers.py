"""Shared helpers for the ``doc2x`` subcommands."""

import argparse
import re
from typing import Optional

from doc2x.clients.doc2x_client import Doc2XClient
from doc2x.core.exceptions import ValidationError
from doc2x.core.settings import doc2x_settings
from doc2x.models.dto import ConvertFormat, FormulaMode
from doc2x.resilience.cancellation import CancelToken
from doc2x.utils.io_utils import ensure_parent

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """argparse type for durations: ``3``, ``3s``, ``500ms``, ``5m``, ``1h``.

    Returns:
        Seconds as float
    """
    match = _DURATION_RE.match(value)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit or "s"]


def resolve_api_key(flag_value: Optional[str]) -> str:
    """Resolve the API key: flag, then DOC2X_APIKEY, then DOC2X_API_KEY."""
    api_key = flag_value or doc2x_settings.api_key
    if not api_key:
        raise ValidationError(
            "api key is required (flag --api-key or DOC2X_APIKEY / DOC2X_API_KEY)",
            field="api_key",
        )
    return api_key


def parse_convert_format(value: str) -> ConvertFormat:
    try:
        return ConvertFormat((value or "").lower())
    except ValueError:
        raise ValidationError(f"unsupported target format: {value}", field="to") from None


def parse_formula_mode(value: str) -> FormulaMode:
    try:
        return FormulaMode((value or "").lower())
    except ValueError:
        raise ValidationError(
            f"unsupported formula mode: {value}", field="formula_mode"
        ) from None


def build_client(args: argparse.Namespace, api_key: str) -> Doc2XClient:
    return Doc2XClient(
        api_key,
        base_url=args.base_url,
        timeout=args.timeout,
        processing_timeout=args.processing_timeout,
    )


async def download_to_file(
    client: Doc2XClient, url: str, target_path: str, token: CancelToken
) -> int:
    """Stream a converted file to ``target_path``, creating its directory."""
    ensure_parent(target_path)
    with open(target_path, "wb") as f:
        return await client.download_file_to(url, f, token)
