"""
Tests for the shared pricing formula used by every consultation and report flow.
"""
import math
import pytest
import sys
from decimal import Decimal
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from diligence.errors import InvalidPricingInput
from diligence.models.pricing import ConsultationType, ReportPriority, ReportType
from diligence.services.pricing_service import (
    calculate_price,
    consultation_price_table,
    duration_multiplier_for,
    quote_consultation,
    quote_report,
    report_price_table,
)


class TestCalculatePrice:

    def test_full_hour_no_priority(self):
        assert calculate_price(300, 1.0, 1.0) == 300

    def test_half_hour_high_priority(self):
        assert calculate_price(400, 0.5, 1.5) == 300

    def test_half_rounds_up(self):
        # 350 * 0.75 = 262.5
        assert calculate_price(350, 0.75) == 263

    def test_decimal_inputs(self):
        assert calculate_price(Decimal("800"), Decimal("1.0"), Decimal("1.2")) == 960

    @pytest.mark.parametrize("base_rate", [0, -1, -300.5])
    def test_non_positive_base_rate_rejected(self, base_rate):
        with pytest.raises(InvalidPricingInput):
            calculate_price(base_rate, 1.0)

    @pytest.mark.parametrize("base_rate", [math.nan, math.inf, "300", None, True])
    def test_non_numeric_base_rate_rejected(self, base_rate):
        with pytest.raises(InvalidPricingInput):
            calculate_price(base_rate, 1.0)

    @pytest.mark.parametrize("multiplier", [0, 0.6, 2.0, -0.5])
    def test_unknown_duration_multiplier_rejected(self, multiplier):
        with pytest.raises(InvalidPricingInput):
            calculate_price(300, multiplier)

    def test_unknown_priority_multiplier_rejected(self):
        with pytest.raises(InvalidPricingInput):
            calculate_price(300, 1.0, 1.3)


class TestQuotes:

    def test_45_minute_due_diligence_ignores_priority(self):
        quote = quote_consultation(ConsultationType.DUE_DILIGENCE, 45)
        assert quote.price == 300
        assert quote.base_rate == 400
        assert quote.duration_multiplier == 0.75
        assert quote.priority is None

    def test_medium_priority_advisory_notes_report(self):
        quote = quote_report(ReportType.ADVISORY_NOTES, ReportPriority.MEDIUM)
        assert quote.price == 960
        assert quote.priority == ReportPriority.MEDIUM

    def test_string_inputs_accepted(self):
        assert quote_consultation("STRATEGIC_ADVISORY", 30).price == 150
        assert quote_report("MARKET_RESEARCH", "HIGH").price == 1800

    def test_unsupported_length_rejected(self):
        with pytest.raises(InvalidPricingInput):
            duration_multiplier_for(90)
        with pytest.raises(InvalidPricingInput):
            quote_consultation(ConsultationType.TOKEN_LAUNCH, 15)

    def test_unknown_types_rejected(self):
        with pytest.raises(InvalidPricingInput):
            quote_consultation("AUDIT", 60)
        with pytest.raises(InvalidPricingInput):
            quote_report(ReportType.DUE_DILIGENCE, "CRITICAL")

    def test_tables_match_quotes(self):
        by_type = {row["consultation_type"]: row for row in consultation_price_table()}
        assert by_type["BLOCKCHAIN_INTEGRATION_ADVISORY"]["prices"]["45"] == 263
        for row in report_price_table():
            for priority, price in row["prices"].items():
                assert price == quote_report(row["report_type"], priority).price
