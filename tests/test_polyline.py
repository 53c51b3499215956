"""Unit tests for the encoded polyline codec."""

import pytest

from src.domain import polyline

GOOGLE_SAMPLE = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]
GOOGLE_ENCODED = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


class TestPolyline:
    def test_encode_matches_reference(self):
        assert polyline.encode(GOOGLE_SAMPLE) == GOOGLE_ENCODED

    def test_decode_matches_reference(self):
        assert polyline.decode(GOOGLE_ENCODED) == pytest.approx(GOOGLE_SAMPLE)

    def test_empty(self):
        assert polyline.encode([]) == ""
        assert polyline.decode("") == []

    def test_precision_is_five_decimals(self):
        decoded = polyline.decode(polyline.encode([(19.0760123, 72.8777456)]))
        assert decoded == [(19.07601, 72.87775)]

    def test_reverse(self):
        reversed_points = polyline.decode(polyline.reverse(GOOGLE_ENCODED))
        assert reversed_points == pytest.approx(list(reversed(GOOGLE_SAMPLE)))

    def test_truncated_string_raises(self):
        with pytest.raises(ValueError, match="Truncated"):
            polyline.decode(GOOGLE_ENCODED[:-1])
