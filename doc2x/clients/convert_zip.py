"""
Decoding of the ``convert_zip`` payload returned by the image layout API.

The payload is a base64 encoded zip archive, padded or unpadded, optionally
wrapped in a ``data:<mime>;base64,`` URL.
"""

from __future__ import annotations

import base64
import binascii

from doc2x.core.exceptions import InvalidResponseError, ValidationError
from doc2x.models.dto import Operation

DATA_URL_PREFIX = "data:"
BASE64_MARKER = "base64,"


def strip_base64_data_url(value: str) -> str:
    """
    Remove a ``data:...;base64,`` prefix if present.

    Values that start with ``data:`` but carry no base64 marker are
    returned unchanged.
    """
    if not value.startswith(DATA_URL_PREFIX):
        return value

    idx = value.find(BASE64_MARKER)
    if idx == -1:
        return value

    return value[idx + len(BASE64_MARKER):]


def normalize_convert_zip(convert_zip: str | None) -> str:
    """
    Trim the payload and strip an optional data URL prefix.

    Raises:
      ValidationError: If nothing is left to decode.
    """
    payload = (convert_zip or "").strip()
    if not payload:
        raise ValidationError("convert_zip cannot be empty", field="convert_zip")

    payload = strip_base64_data_url(payload).strip()
    if not payload:
        raise ValidationError("convert_zip cannot be empty", field="convert_zip")

    return payload


def decode_base64_payload(payload: str) -> bytes:
    """
    Decode standard base64, falling back to the unpadded alphabet.

    Raises:
      ValidationError: If the payload is empty.
      InvalidResponseError: If neither form decodes. The error of the
        standard decoding is chained.
    """
    if not payload:
        raise ValidationError("convert_zip cannot be empty", field="convert_zip")

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as std_err:
        try:
            return base64.b64decode(payload + "=" * (-len(payload) % 4), validate=True)
        except (binascii.Error, ValueError):
            raise InvalidResponseError(
                str(Operation.FETCH_CONVERT_ZIP),
                f"decode convert_zip failed: {std_err}",
            ) from std_err


def decode_convert_zip(convert_zip: str | None) -> bytes:
    """
    Resolve a ``convert_zip`` payload into raw zip bytes.

    Raises:
      ValidationError: If the payload is empty.
      InvalidResponseError: If it is not valid base64 or decodes to nothing.
    """
    data = decode_base64_payload(normalize_convert_zip(convert_zip))
    if not data:
        raise InvalidResponseError(
            str(Operation.FETCH_CONVERT_ZIP), "convert_zip payload is empty"
        )
    return data
