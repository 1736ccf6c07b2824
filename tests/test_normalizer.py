from decimal import Decimal

import pytest

from margin_scout.exceptions import NormalizationError
from margin_scout.normalization.data_normalizer import (
    CleaningRules,
    ColumnMapping,
    DataNormalizer,
    normalize_size,
    title_case,
)

MAPPING = ColumnMapping(
    brand="Merk",
    product_name="Naam",
    wholesale_price="Inkoopprijs",
    variant_size="Inhoud",
    ean="EAN",
    currency="Valuta",
    supplier="Leverancier",
    availability="Voorraad",
)


def row(**overrides):
    raw = {
        "Merk": "chanel",
        "Naam": "n°5   eau de parfum",
        "Inkoopprijs": "€ 79,50",
        "Inhoud": "100 ML",
        "EAN": "3145891253317",
        "Valuta": "€",
        "Leverancier": "  Parfum Groothandel ",
        "Voorraad": "Op voorraad",
    }
    raw.update(overrides)
    return raw


@pytest.mark.parametrize("value, expected", [
    ("100 ML", ("100ml", 1)),
    ("1,5 L", ("1.5l", 1)),
    ("3x50ml", ("50ml", 3)),
    ("2 × 30 ml", ("30ml", 2)),
    ("50 millilitres", ("50ml", 1)),
    ("200 gram", ("200g", 1)),
    ("One Size", ("onesize", 1)),
    ("", (None, 1)),
    (None, (None, 1)),
])
def test_normalize_size(value, expected):
    assert normalize_size(value) == expected


def test_title_case_keeps_symbols():
    assert title_case("n°5 eau de parfum") == "N°5 Eau De Parfum"
    assert title_case("CHANEL") == "Chanel"


def test_normalize_row():
    product, errors, warnings = DataNormalizer().normalize_row(row(), MAPPING, 2, supplier_id="s1")

    assert errors == []
    assert warnings == []
    assert product.supplier_id == "s1"
    assert product.brand == "Chanel"
    assert product.product_name == "N°5 Eau De Parfum"
    assert product.wholesale_price == Decimal("79.50")
    assert product.variant_size == "100ml"
    assert product.ean == "3145891253317"
    assert product.currency == "EUR"
    assert product.supplier_name == "Parfum Groothandel"
    assert product.availability is True
    assert product.pack_size == 1


def test_multipack_sets_pack_size():
    product, _, _ = DataNormalizer().normalize_row(row(Inhoud="3x50ml"), MAPPING, 2)
    assert product.variant_size == "50ml"
    assert product.pack_size == 3

    product, _, _ = DataNormalizer(parse_multipacks=False).normalize_row(row(Inhoud="3x50ml"), MAPPING, 2)
    assert product.pack_size == 1


def test_required_fields():
    product, errors, _ = DataNormalizer().normalize_row(row(Merk="", Inkoopprijs="n/a"), MAPPING, 7)

    assert product is None
    assert {e.field for e in errors} == {"brand", "wholesale_price"}
    assert all(e.row == 7 for e in errors)


def test_check_columns_reports_missing_mapped_columns():
    normalizer = DataNormalizer()
    normalizer.check_columns(["Merk", "Naam", "Inkoopprijs"], MAPPING)

    with pytest.raises(NormalizationError) as excinfo:
        normalizer.check_columns(["Merk", "Inhoud"], MAPPING)
    assert excinfo.value.missing == ["Inkoopprijs", "Naam"]


def test_suspicious_ean_is_kept_with_warning():
    product, errors, warnings = DataNormalizer().normalize_row(row(EAN="31458-912"), MAPPING, 3)

    assert errors == []
    assert product.ean == "31458912"

    product, errors, warnings = DataNormalizer().normalize_row(row(EAN="1234567"), MAPPING, 3)
    assert product.ean == "1234567"
    assert [w.field for w in warnings] == ["ean"]


@pytest.mark.parametrize("value, expected", [
    ("", True),
    ("Op voorraad", True),
    ("yes", True),
    ("Unavailable", False),
    ("Niet beschikbaar", False),
    ("no", False),
    ("0", False),
    ("maybe later", True),
])
def test_parse_availability(value, expected):
    assert DataNormalizer.parse_availability(value) is expected


@pytest.mark.parametrize("value, expected", [
    ("", "EUR"),
    ("eur", "EUR"),
    ("$", "USD"),
    ("£", "GBP"),
    ("chf", "CHF"),
])
def test_normalize_currency(value, expected):
    assert DataNormalizer.normalize_currency(value) == expected


def test_parse_pack_size():
    assert DataNormalizer.parse_pack_size("6 stuks") == 6
    assert DataNormalizer.parse_pack_size("Duo") == 2
    assert DataNormalizer.parse_pack_size("") == 1
    assert DataNormalizer.parse_pack_size("0") == 1


def test_cleaning_rules():
    normalizer = DataNormalizer(CleaningRules(normalize_case="uppercase", remove_special_chars=True))
    assert normalizer.clean_string("  Chanel   N°5! ") == "CHANEL N5"

    normalizer.update_cleaning_rules(normalize_case=None)
    assert normalizer.get_cleaning_rules().normalize_case is None
    assert normalizer.clean_string("Chanel  N°5") == "Chanel N5"


def test_normalize_rows_collects_issues():
    rows = [row(), row(Naam=""), row(EAN="123")]
    result = DataNormalizer().normalize_rows(rows, MAPPING, supplier_id="s1")

    assert result.total_rows == 3
    assert result.valid_rows == 2
    assert not result.is_valid
    assert [(e.row, e.field) for e in result.errors] == [(3, "product_name")]
    assert [(w.row, w.field) for w in result.warnings] == [(4, "ean")]
