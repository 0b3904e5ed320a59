"""
Unit Tests for the Tax Engine

Covers the rule-based Canadian path, exemption, unresolved jurisdictions,
per-component rounding and normalization of external calculator answers.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from microservices.sales_order_service.models import TaxCalculationRequest
from microservices.sales_order_service.protocols import (
    OrderValidationError,
    TaxJurisdictionUnavailableError,
    TaxServiceUnavailableError,
)
from microservices.sales_order_service.tax_engine import (
    TaxEngine,
    build_external_payload,
    compute_local_tax,
    line_net,
    round_money,
    split_known_tax,
)
from microservices.sales_order_service.tax_rules import (
    ExternalDelegated,
    Unresolved,
    resolve_jurisdiction,
)


def _request(data_factory, jurisdiction="ON", lines=None, shipping="0", exempt=False, **address):
    return TaxCalculationRequest(
        ship_to=data_factory.make_ship_to(jurisdiction, **address),
        customer_exempt=exempt,
        lines=lines if lines is not None else [data_factory.make_line(sku="SKU-1", quantity="2", unit_price="50")],
        shipping_amount=Decimal(shipping),
    )


@pytest.mark.unit
class TestMoneyHelpers:

    def test_round_half_up(self):
        assert round_money(Decimal("9.975")) == Decimal("9.98")
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(None) == Decimal("0.00")

    def test_line_net_applies_discount(self, data_factory):
        line = data_factory.make_line(quantity="3", unit_price="19.99", discount="5")
        assert line_net(line) == Decimal("54.97")

    def test_line_net_never_negative(self, data_factory):
        line = data_factory.make_line(quantity="1", unit_price="10", discount="25")
        assert line_net(line) == Decimal("0.00")

    def test_line_net_keeps_sub_cent_precision(self, data_factory):
        line = data_factory.make_line(quantity="2", unit_price="0.2481")
        assert line_net(line) == Decimal("0.4962")


@pytest.mark.unit
@pytest.mark.asyncio
class TestCanadianTax:

    async def test_rates_apply_to_unrounded_line_net(self, data_factory):
        line = data_factory.make_line(sku="SKU-1", quantity="2", unit_price="0.2481")

        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", lines=[line]))

        entry = breakdown.per_line[0]
        assert entry.taxes[0].amount == Decimal("0.06")
        assert entry.basis == Decimal("0.50")
        assert entry.line_total_with_tax == Decimal("0.56")
        assert breakdown.totals.subtotal == Decimal("0.50")
        assert breakdown.totals.tax_by_type["HST"] == Decimal("0.06")

    async def test_ontario_hst_on_lines_and_shipping(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", shipping="10"))

        line = breakdown.per_line[0]
        assert line.basis == Decimal("100.00")
        assert [(t.name, t.rate, t.amount) for t in line.taxes] == [("HST", Decimal("0.13"), Decimal("13.00"))]
        assert line.line_tax_total == Decimal("13.00")
        assert line.line_total_with_tax == Decimal("113.00")

        assert breakdown.shipping.basis == Decimal("10.00")
        assert breakdown.shipping.tax_total == Decimal("1.30")
        assert breakdown.shipping.total_with_tax == Decimal("11.30")

        totals = breakdown.totals
        assert totals.tax_by_type == {
            "GST": Decimal("0"), "HST": Decimal("14.30"), "PST": Decimal("0"), "QST": Decimal("0"),
        }
        assert totals.total_tax == Decimal("14.30")
        assert totals.subtotal == Decimal("110.00")
        assert totals.grand_total == Decimal("124.30")

    async def test_quebec_gst_and_qst(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "QC"))

        taxes = {t.name: t.amount for t in breakdown.per_line[0].taxes}
        assert taxes == {"GST": Decimal("5.00"), "QST": Decimal("9.98")}
        assert breakdown.totals.total_tax == Decimal("14.98")
        assert breakdown.totals.grand_total == Decimal("114.98")
        assert breakdown.shipping is None

    async def test_alberta_gst_only(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "AB"))

        assert [t.name for t in breakdown.per_line[0].taxes] == ["GST"]
        assert breakdown.totals.total_tax == Decimal("5.00")
        assert breakdown.totals.tax_by_type["GST"] == Decimal("5.00")

    async def test_british_columbia_gst_and_pst(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "BC"))

        taxes = {t.name: t.amount for t in breakdown.per_line[0].taxes}
        assert taxes == {"GST": Decimal("5.00"), "PST": Decimal("7.00")}
        assert split_known_tax(breakdown) == (
            Decimal("5.00"), Decimal("0.00"), Decimal("7.00"), Decimal("0.00"),
        )

    async def test_components_are_rounded_independently(self, data_factory):
        line = data_factory.make_line(quantity="1", unit_price="0.10")
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "QC", lines=[line]))

        amounts = [t.amount for t in breakdown.per_line[0].taxes]
        assert amounts == [Decimal("0.01"), Decimal("0.01")]
        assert breakdown.per_line[0].line_tax_total == Decimal("0.02")
        # the combined rate applied once would round to a single cent
        assert round_money(Decimal("0.10") * Decimal("0.14975")) == Decimal("0.01")

    async def test_non_taxable_category_has_zero_basis(self, data_factory):
        lines = [
            data_factory.make_line(quantity="1", unit_price="100"),
            data_factory.make_line(quantity="2", unit_price="40", tax_category="labor"),
        ]
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", lines=lines))

        labor = breakdown.per_line[1]
        assert labor.basis == Decimal("0.00")
        assert labor.taxes == []
        assert labor.line_total_with_tax == Decimal("80.00")
        assert breakdown.totals.subtotal == Decimal("180.00")
        assert breakdown.totals.total_tax == Decimal("13.00")

    async def test_invalid_lines_are_ignored(self, data_factory):
        lines = [
            data_factory.make_line(quantity="1", unit_price="100"),
            data_factory.make_invalid_zero_quantity_line(),
        ]
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", lines=lines))

        assert len(breakdown.per_line) == 1

    async def test_unknown_province_is_untaxed(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", region="ZZ"))

        assert breakdown.per_line[0].taxes == []
        assert breakdown.totals.total_tax == Decimal("0.00")
        assert breakdown.totals.grand_total == Decimal("100.00")

    async def test_identical_inputs_give_identical_breakdowns(self, data_factory):
        request = _request(data_factory, "QC", shipping="12.50")
        engine = TaxEngine()

        first = await engine.compute_tax(request)
        second = await engine.compute_tax(request)

        assert first.to_storage() == second.to_storage()

    async def test_storage_form_is_camel_case_with_cent_strings(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", shipping="10"))
        stored = breakdown.to_storage()

        assert set(stored) >= {"perLine", "shipping", "totals"}
        assert stored["totals"]["grandTotal"] == "124.30"
        assert stored["totals"]["taxByType"]["HST"] == "14.30"
        assert stored["perLine"][0]["lineTaxTotal"] == "13.00"


@pytest.mark.unit
@pytest.mark.asyncio
class TestExemptionAndValidation:

    async def test_exempt_customer_pays_no_tax(self, data_factory):
        breakdown = await TaxEngine().compute_tax(_request(data_factory, "ON", shipping="10", exempt=True))

        assert all(line.basis == Decimal("0") and line.taxes == [] for line in breakdown.per_line)
        assert breakdown.shipping.tax_total == Decimal("0")
        assert breakdown.totals.tax_by_type == {
            "GST": Decimal("0"), "HST": Decimal("0"), "PST": Decimal("0"), "QST": Decimal("0"),
        }
        assert breakdown.totals.grand_total == breakdown.totals.subtotal == Decimal("110.00")

    async def test_exempt_customer_skips_external_calculator(self, data_factory):
        client = AsyncMock()
        engine = TaxEngine(tax_client=client)

        breakdown = await engine.compute_tax(_request(data_factory, "US-CA", exempt=True))

        client.calculate.assert_not_called()
        assert breakdown.totals.total_tax == Decimal("0")

    async def test_po_box_ship_to_is_rejected(self, data_factory):
        with pytest.raises(OrderValidationError) as exc_info:
            await TaxEngine().compute_tax(_request(data_factory, "ON", line1="P.O. Box 42"))
        assert exc_info.value.guard == "ship_to_po_box"

    async def test_incomplete_ship_to_is_rejected(self, data_factory):
        with pytest.raises(OrderValidationError) as exc_info:
            await TaxEngine().compute_tax(_request(data_factory, "ON", postal_code=""))
        assert exc_info.value.guard == "ship_to_complete"

    async def test_no_valid_lines_is_rejected(self, data_factory):
        lines = [data_factory.make_invalid_zero_quantity_line()]
        with pytest.raises(OrderValidationError) as exc_info:
            await TaxEngine().compute_tax(_request(data_factory, "ON", lines=lines))
        assert exc_info.value.guard == "valid_lines"


@pytest.mark.unit
class TestLocalTax:

    def test_unresolved_jurisdiction_is_untaxed(self, data_factory):
        lines = [data_factory.make_line(quantity="1", unit_price="25")]
        breakdown = compute_local_tax(Unresolved(country="CA"), lines, Decimal("5"))

        assert breakdown.totals.total_tax == Decimal("0")
        assert breakdown.totals.grand_total == Decimal("30.00")
        assert set(breakdown.totals.tax_by_type) == {"GST", "HST", "PST", "QST"}

    def test_delegated_jurisdiction_needs_external_calculator(self, data_factory):
        lines = [data_factory.make_line()]
        with pytest.raises(ValueError):
            compute_local_tax(ExternalDelegated(country="US", region="CA"), lines, Decimal("0"))

    def test_rule_based_matches_engine_path(self, data_factory):
        lines = [data_factory.make_line(quantity="4", unit_price="12.5")]
        breakdown = compute_local_tax(resolve_jurisdiction("CA", "ON"), lines, Decimal("0"))

        assert breakdown.totals.total_tax == Decimal("6.50")


@pytest.mark.unit
@pytest.mark.asyncio
class TestExternalCalculator:

    async def test_external_result_is_normalized(self, data_factory):
        client = AsyncMock()
        client.calculate.return_value = data_factory.make_external_tax_result(
            {"SKU-1": "7.25"}, shipping_tax="0.73"
        )
        engine = TaxEngine(tax_client=client, origin_address={"country": "US", "state": "CA"})

        breakdown = await engine.compute_tax(_request(data_factory, "US-CA", shipping="10"))

        line = breakdown.per_line[0]
        assert line.basis == Decimal("100.00")
        assert [(t.name, t.amount) for t in line.taxes] == [("Sales Tax", Decimal("7.25"))]
        assert breakdown.shipping.tax_total == Decimal("0.73")
        assert breakdown.totals.total_tax == Decimal("7.98")
        assert breakdown.totals.tax_by_type["Sales Tax"] == Decimal("7.98")
        assert breakdown.totals.tax_by_type["HST"] == Decimal("0")
        assert breakdown.totals.subtotal == Decimal("110.00")
        assert breakdown.totals.grand_total == Decimal("117.98")
        assert breakdown.jurisdiction == "CA"
        assert breakdown.has_nexus is True

    async def test_payload_carries_addresses_and_lines(self, data_factory):
        client = AsyncMock()
        client.calculate.return_value = data_factory.make_external_tax_result({"SKU-1": "7.25"})
        engine = TaxEngine(tax_client=client, origin_address={"country": "US", "state": "NV", "zip": "89501"})

        await engine.compute_tax(_request(data_factory, "US-CA"))

        payload = client.calculate.call_args[0][0]
        assert payload["fromAddress"]["state"] == "NV"
        assert payload["toAddress"] == {
            "country": "US", "state": "CA", "city": "San Francisco", "zip": "94105", "street": "1 Market St",
        }
        assert payload["lineItems"][0]["id"] == "SKU-1"
        assert payload["lineItems"][0]["quantity"] == 2.0
        assert "taxjar_product_tax_code" not in payload["lineItems"][0]

    async def test_missing_jurisdiction_defaults_to_code(self, data_factory):
        client = AsyncMock()
        client.calculate.return_value = data_factory.make_external_tax_result({"SKU-1": "8.25"}, jurisdiction=None)

        breakdown = await TaxEngine(tax_client=client).compute_tax(_request(data_factory, "US-TX"))

        assert breakdown.jurisdiction == "US-TX"

    async def test_fallback_means_no_coverage(self, data_factory):
        client = AsyncMock()
        client.calculate.return_value = data_factory.make_external_fallback_result("No nexus in TX")

        with pytest.raises(TaxJurisdictionUnavailableError, match="No nexus in TX"):
            await TaxEngine(tax_client=client).compute_tax(_request(data_factory, "US-TX"))

    async def test_unreachable_calculator(self, data_factory):
        client = AsyncMock()
        client.calculate.return_value = None

        with pytest.raises(TaxServiceUnavailableError):
            await TaxEngine(tax_client=client).compute_tax(_request(data_factory, "US-TX"))

    async def test_no_calculator_configured(self, data_factory):
        with pytest.raises(TaxServiceUnavailableError):
            await TaxEngine().compute_tax(_request(data_factory, "US-CA"))


@pytest.mark.unit
class TestExternalPayload:

    def test_payload_forwards_product_tax_code(self, data_factory):
        line = data_factory.make_line(sku="SKU-9", external_tax_code="P0000000")
        request = _request(data_factory, "US-TX", lines=[line])

        payload = build_external_payload(request, [line], {})

        assert payload["lineItems"][0]["taxjar_product_tax_code"] == "P0000000"
        assert "product_tax_code" not in payload["lineItems"][0]
        assert "customerExemptionType" not in payload
        assert payload["fromAddress"]["country"] == ""

    def test_line_id_falls_back_to_product_then_line(self, data_factory):
        line = data_factory.make_line(product_id="prod_1").model_copy(update={"sku": None})
        request = _request(data_factory, "US-TX", lines=[line])

        payload = build_external_payload(request, [line], {})

        assert payload["lineItems"][0]["id"] == "prod_1"
