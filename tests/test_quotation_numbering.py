"""
Tests: quotation number generation.

Covers format assembly, sequence scope per reset policy, continuation from
the last number in the period and collision handling.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from app.core.exceptions import ConflictError
from app.services import quotation_numbering
from app.services.quotation_numbering import (
    QuotationNumberConfig,
    build_number,
    generate_quotation_number,
    get_number_config,
    parse_sequence,
    sequence_scope,
)

NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)
DEFAULT = QuotationNumberConfig()


class TestFormatting:
    def test_default_format(self):
        assert build_number(DEFAULT, NOW, 6) == "QUO-2024-000006"

    def test_monthly_date_part(self):
        cfg = QuotationNumberConfig(date_format="YYYYMM", sequence_length=4)
        assert build_number(cfg, NOW, 12) == "QUO-202403-0012"

    def test_empty_separator(self):
        cfg = QuotationNumberConfig(separator="", date_format="YYYYMMDD", sequence_length=3)
        assert build_number(cfg, NOW, 7) == "QUO20240315007"
        assert parse_sequence("QUO20240315007", cfg) == 7

    def test_parse_non_numeric_suffix(self):
        assert parse_sequence("QUO-2024-ABC", DEFAULT) is None


class TestScope:
    def test_yearly(self):
        assert sequence_scope(DEFAULT, NOW) == "QUO-2024-"

    def test_never(self):
        cfg = QuotationNumberConfig(reset_sequence="NEVER")
        assert sequence_scope(cfg, NOW) == "QUO-"

    def test_yearly_with_daily_dates(self):
        cfg = QuotationNumberConfig(date_format="YYYYMMDD", reset_sequence="YEARLY")
        assert sequence_scope(cfg, NOW) == "QUO-2024"

    def test_daily_reset_degrades_to_date_part(self):
        cfg = QuotationNumberConfig(date_format="YYYY", reset_sequence="DAILY")
        assert sequence_scope(cfg, NOW) == "QUO-2024-"


class TestGenerate:
    def test_first_number_in_period(self):
        assert generate_quotation_number(now=NOW, config=DEFAULT) == "QUO-2024-000001"

    def test_continues_from_last(self, make_quotation):
        make_quotation(number="QUO-2024-000004")
        make_quotation(number="QUO-2024-000005")
        assert generate_quotation_number(now=NOW, config=DEFAULT) == "QUO-2024-000006"

    def test_previous_period_does_not_count(self, make_quotation):
        make_quotation(number="QUO-2023-000041")
        assert generate_quotation_number(now=NOW, config=DEFAULT) == "QUO-2024-000001"

    def test_never_reset_spans_years(self, make_quotation):
        make_quotation(number="QUO-2023-000041")
        cfg = QuotationNumberConfig(reset_sequence="NEVER")
        assert generate_quotation_number(now=NOW, config=cfg) == "QUO-2024-000042"

    def test_collision_bumps_sequence(self):
        taken = {"QUO-2024-000001", "QUO-2024-000002"}
        with patch.object(quotation_numbering, "_number_exists", side_effect=lambda n: n in taken):
            assert generate_quotation_number(now=NOW, config=DEFAULT) == "QUO-2024-000003"

    def test_gives_up_after_retries(self):
        with patch.object(quotation_numbering, "_number_exists", return_value=True):
            with pytest.raises(ConflictError):
                generate_quotation_number(now=NOW, config=DEFAULT)


class TestConfig:
    def test_reads_app_config(self, app):
        app.config["QUOTATION_PREFIX"] = "OFR"
        try:
            assert get_number_config().prefix == "OFR"
        finally:
            app.config["QUOTATION_PREFIX"] = "QUO"

    def test_invalid_values_fall_back(self, app):
        app.config["QUOTATION_DATE_FORMAT"] = "DDMMYYYY"
        try:
            assert get_number_config().date_format == "YYYY"
        finally:
            app.config["QUOTATION_DATE_FORMAT"] = "YYYY"
