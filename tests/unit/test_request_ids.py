"""Tests for request identifier generation and parsing."""

import random
import re
from datetime import datetime, timezone

import pytest

from travel_kernel.utils.request_ids import (
    UNIQUE_ID_CHARS,
    generate_request_id,
    generate_unique_id,
    parse_request_id,
    sanitize_context,
)

WHEN = datetime(2025, 7, 2, 14, 23, tzinfo=timezone.utc)

GENERAL_FORMAT = re.compile(r"^[A-Z]+-\d{8}-\d{4}-[A-Z0-9]{1,5}-[A-Z2-9]{4}$")
CLAIM_FORMAT = re.compile(r"^CLM-\d{8}-\d{4}-[A-Z2-9]{5}-[A-Z2-9]{4}$")


class TestGenerateRequestId:

    def test_general_layout(self):
        request_id = generate_request_id("TSR", "nyc", WHEN, rng=random.Random(7))

        assert GENERAL_FORMAT.match(request_id)
        assert request_id.startswith("TSR-20250702-1423-NYC-")

    def test_claim_layout_ignores_context(self):
        request_id = generate_request_id("CLM", "ignored", WHEN, rng=random.Random(7))

        assert CLAIM_FORMAT.match(request_id)
        assert "IGNOR" not in request_id

    def test_same_seed_gives_same_id(self):
        first = generate_request_id("VIS", "GEN", WHEN, rng=random.Random(42))
        second = generate_request_id("VIS", "GEN", WHEN, rng=random.Random(42))

        assert first == second

    def test_unique_part_avoids_lookalike_characters(self):
        unique = generate_unique_id(200, rng=random.Random(1))

        assert set(unique) <= set(UNIQUE_ID_CHARS)
        assert not set(unique) & set("01IO")


class TestSanitizeContext:

    @pytest.mark.parametrize("raw, expected", [
        ("nyc", "NYC"),
        ("Kuala Lumpur", "KUALA"),
        ("s-f.o", "SFO"),
        ("", "GEN"),
        (None, "GEN"),
        ("--", "GEN"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_context(raw) == expected


class TestParseRequestId:

    def test_parse_general(self):
        parsed = parse_request_id("TSR-20250702-1423-NYC-PCYX")

        assert parsed.prefix == "TSR"
        assert parsed.timestamp == datetime(2025, 7, 2, 14, 23)
        assert parsed.context == "NYC"
        assert parsed.unique_id == "PCYX"

    def test_parse_claim(self):
        parsed = parse_request_id("CLM-20250702-1423-QWSDF-P4Z5")

        assert parsed.context == "CLAIM"
        assert parsed.unique_id == "QWSDF-P4Z5"

    @pytest.mark.parametrize("bad", [
        "TSR-20250702-1423-NYC",
        "TSR-2025XX02-1423-NYC-PCYX",
        "not-an-id",
    ])
    def test_malformed_raises(self, bad):
        with pytest.raises(ValueError):
            parse_request_id(bad)
