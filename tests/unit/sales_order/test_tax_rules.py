"""
Unit Tests for the Tax Rule Table

Province rate composition, taxability matrix and jurisdiction resolution.
"""

from decimal import Decimal

import pytest

from microservices.sales_order_service.tax_rules import (
    DomesticRuleBased,
    ExternalDelegated,
    TaxRate,
    Unresolved,
    canadian_tax_rates,
    is_taxable,
    resolve_jurisdiction,
)


@pytest.mark.unit
class TestCanadianRates:

    @pytest.mark.parametrize("province,rate", [
        ("ON", "0.13"), ("NB", "0.15"), ("NS", "0.15"), ("PE", "0.15"), ("NL", "0.15"),
    ])
    def test_hst_provinces(self, province, rate):
        assert canadian_tax_rates(province) == (TaxRate("HST", Decimal(rate)),)

    @pytest.mark.parametrize("province", ["AB", "NT", "NU", "YT"])
    def test_gst_only_provinces(self, province):
        assert canadian_tax_rates(province) == (TaxRate("GST", Decimal("0.05")),)

    def test_quebec_gst_plus_qst(self):
        assert canadian_tax_rates("QC") == (
            TaxRate("GST", Decimal("0.05")),
            TaxRate("QST", Decimal("0.09975")),
        )

    @pytest.mark.parametrize("province,pst", [("BC", "0.07"), ("SK", "0.06"), ("MB", "0.07")])
    def test_gst_plus_pst_provinces(self, province, pst):
        assert canadian_tax_rates(province) == (
            TaxRate("GST", Decimal("0.05")),
            TaxRate("PST", Decimal(pst)),
        )

    def test_province_code_is_normalized(self):
        assert canadian_tax_rates(" on ") == canadian_tax_rates("ON")

    def test_unknown_province_has_no_rates(self):
        assert canadian_tax_rates("XX") == ()


@pytest.mark.unit
class TestTaxability:

    def test_missing_category_is_tangible_goods(self):
        assert is_taxable(None) is True
        assert is_taxable("") is True

    @pytest.mark.parametrize("category", ["tangible_goods", "digital_goods", "shipping"])
    def test_taxable_categories(self, category):
        assert is_taxable(category) is True

    @pytest.mark.parametrize("category", ["labor", "exempt", "LABOR"])
    def test_non_taxable_categories(self, category):
        assert is_taxable(category) is False

    def test_unrecognized_category_is_taxable(self):
        assert is_taxable("scrap_metal") is True


@pytest.mark.unit
class TestResolveJurisdiction:

    def test_canada_is_rule_based(self):
        jurisdiction = resolve_jurisdiction("ca", "qc")
        assert isinstance(jurisdiction, DomesticRuleBased)
        assert jurisdiction.code == "CA-QC"
        assert [r.name for r in jurisdiction.rates] == ["GST", "QST"]

    def test_unknown_canadian_province_stays_domestic(self):
        jurisdiction = resolve_jurisdiction("CA", "ZZ")
        assert isinstance(jurisdiction, DomesticRuleBased)
        assert jurisdiction.rates == ()

    def test_other_countries_are_delegated(self):
        jurisdiction = resolve_jurisdiction("US", "CA")
        assert jurisdiction == ExternalDelegated(country="US", region="CA")
        assert jurisdiction.code == "US-CA"

    @pytest.mark.parametrize("country,region", [("", "ON"), ("CA", ""), (None, None), ("  ", "TX")])
    def test_missing_country_or_region_is_unresolved(self, country, region):
        assert isinstance(resolve_jurisdiction(country, region), Unresolved)
