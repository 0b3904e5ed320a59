"""
Tax Rule Table

Static jurisdiction -> tax composition mapping and the taxability matrix
per line tax category.

Canada is rule based (GST/HST/PST/QST by province). Every other country is
delegated to the external tax calculator. Domestic rule tables are keyed by
country code in DOMESTIC_RULE_TABLES; registering a new table makes the
country rule based everywhere resolve_jurisdiction is used.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class TaxRate:
    name: str
    rate: Decimal


# ====================
# Canada
# ====================

GST_RATE = Decimal("0.05")
QST_RATE = Decimal("0.09975")

HST_PROVINCES: Dict[str, Decimal] = {
    "ON": Decimal("0.13"),
    "NB": Decimal("0.15"),
    "NS": Decimal("0.15"),
    "PE": Decimal("0.15"),
    "NL": Decimal("0.15"),
}

GST_ONLY_PROVINCES = frozenset({"AB", "NT", "NU", "YT"})

PST_PROVINCES: Dict[str, Decimal] = {
    "BC": Decimal("0.07"),
    "SK": Decimal("0.06"),
    "MB": Decimal("0.07"),
}

# Keys always present in a breakdown's tax_by_type
CANADIAN_TAX_NAMES: Tuple[str, ...] = ("GST", "HST", "PST", "QST")


def canadian_tax_rates(province: str) -> Tuple[TaxRate, ...]:
    """Tax components for a Canadian province code; empty for unknown codes."""
    code = (province or "").strip().upper()

    if code in HST_PROVINCES:
        return (TaxRate("HST", HST_PROVINCES[code]),)
    if code in GST_ONLY_PROVINCES:
        return (TaxRate("GST", GST_RATE),)
    if code == "QC":
        return (TaxRate("GST", GST_RATE), TaxRate("QST", QST_RATE))
    if code in PST_PROVINCES:
        return (TaxRate("GST", GST_RATE), TaxRate("PST", PST_PROVINCES[code]))
    return ()


DOMESTIC_RULE_TABLES: Dict[str, Callable[[str], Tuple[TaxRate, ...]]] = {
    "CA": canadian_tax_rates,
}


# ====================
# Taxability
# ====================

DEFAULT_TAX_CATEGORY = "tangible_goods"
SHIPPING_TAX_CATEGORY = "shipping"

TAXABILITY: Dict[str, bool] = {
    "tangible_goods": True,
    "digital_goods": True,
    "shipping": True,
    "labor": False,
    "exempt": False,
}


def is_taxable(tax_category: Optional[str]) -> bool:
    """Unrecognized categories are taxable."""
    category = (tax_category or DEFAULT_TAX_CATEGORY).strip().lower()
    return TAXABILITY.get(category, True)


# ====================
# Jurisdiction resolution
# ====================

@dataclass(frozen=True)
class DomesticRuleBased:
    country: str
    region: str
    rates: Tuple[TaxRate, ...]

    @property
    def code(self) -> str:
        return f"{self.country}-{self.region}"


@dataclass(frozen=True)
class ExternalDelegated:
    country: str
    region: str

    @property
    def code(self) -> str:
        return f"{self.country}-{self.region}"


@dataclass(frozen=True)
class Unresolved:
    country: str
    region: str = ""


Jurisdiction = Union[DomesticRuleBased, ExternalDelegated, Unresolved]


def resolve_jurisdiction(country: Optional[str], region: Optional[str]) -> Jurisdiction:
    """Resolve the tax jurisdiction of a ship-to country and province/state."""
    country_code = (country or "").strip().upper()
    region_code = (region or "").strip().upper()

    if not country_code or not region_code:
        return Unresolved(country=country_code, region=region_code)

    rule_table = DOMESTIC_RULE_TABLES.get(country_code)
    if rule_table is not None:
        return DomesticRuleBased(
            country=country_code,
            region=region_code,
            rates=rule_table(region_code),
        )

    return ExternalDelegated(country=country_code, region=region_code)
