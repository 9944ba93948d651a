"""Unit tests for convert_zip payload decoding."""

import base64

import pytest

from doc2x.clients.convert_zip import (
    decode_base64_payload,
    decode_convert_zip,
    normalize_convert_zip,
    strip_base64_data_url,
)
from doc2x.core.exceptions import InvalidResponseError, ValidationError

ZIP_BYTES = b"PK\x03\x04archive-bytes"
PADDED = base64.b64encode(ZIP_BYTES).decode()


class TestStripDataURL:
    """Tests for data URL prefix handling."""

    def test_strips_prefix(self):
        assert strip_base64_data_url("data:application/zip;base64,QUJD") == "QUJD"

    def test_plain_payload_unchanged(self):
        assert strip_base64_data_url("QUJD") == "QUJD"

    def test_data_url_without_marker_unchanged(self):
        assert strip_base64_data_url("data:text/plain,hello") == "data:text/plain,hello"


class TestNormalize:
    """Tests for payload normalization."""

    def test_trims_whitespace(self):
        assert normalize_convert_zip(f"  {PADDED}\n") == PADDED

    @pytest.mark.parametrize("payload", ["", "   ", None, "data:application/zip;base64,  "])
    def test_empty_payload_rejected(self, payload):
        with pytest.raises(ValidationError):
            normalize_convert_zip(payload)


class TestDecode:
    """Tests for base64 decoding."""

    def test_padded(self):
        assert decode_base64_payload(PADDED) == ZIP_BYTES

    def test_unpadded_fallback(self):
        """Test payloads with padding stripped still decode."""
        unpadded = PADDED.rstrip("=")
        assert unpadded != PADDED
        assert decode_base64_payload(unpadded) == ZIP_BYTES

    def test_invalid_payload(self):
        """Test garbage fails with the standard decoding error chained."""
        with pytest.raises(InvalidResponseError, match="decode convert_zip failed") as exc_info:
            decode_base64_payload("not*base64!")

        assert exc_info.value.__cause__ is not None

    def test_data_url_payload(self):
        assert decode_convert_zip(f"data:application/zip;base64,{PADDED}") == ZIP_BYTES
