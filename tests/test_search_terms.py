import pytest

from margin_scout.manager import MAX_TERM_LENGTH, build_search_terms, create_batches


def test_search_terms_strip_category(make_product):
    product = make_product(brand="Chanel", product_name="N°5 Eau de Parfum", variant_size="100ml")
    assert build_search_terms(product) == ["Chanel N°5", "Chanel N°5 100ml", "N°5 Chanel", "N°5", "Chanel"]


def test_search_terms_strip_abbreviations(make_product):
    product = make_product(brand="Dior", product_name="Sauvage EDT Spray", variant_size="100 ml")
    assert build_search_terms(product) == ["Dior Sauvage", "Dior Sauvage 100 ml", "Sauvage Dior", "Sauvage", "Dior"]


def test_placeholder_size_is_ignored(make_product):
    product = make_product(variant_size="1 ml")
    assert build_search_terms(product) == ["Chanel N°5", "N°5 Chanel", "N°5", "Chanel"]


def test_name_made_only_of_category_is_kept(make_product):
    product = make_product(brand="Dior", product_name="Eau de Parfum", variant_size="50ml")
    assert build_search_terms(product) == [
        "Dior Eau de Parfum",
        "Dior Eau de Parfum 50ml",
        "Eau de Parfum Dior",
        "Eau de Parfum",
        "Dior",
    ]


def test_terms_are_short_and_unique(make_product):
    product = make_product(brand="Maison Francis Kurkdjian", product_name="Baccarat Rouge 540 Extrait de Parfum",
                           variant_size="70ml")
    terms = build_search_terms(product)

    assert terms
    assert len(terms) == len(set(terms))
    assert all(len(term) < MAX_TERM_LENGTH for term in terms)
    assert "Baccarat Rouge 540" in terms


def test_fallback_when_every_variant_is_too_long(make_product):
    brand = "B" * 25
    name = "N" * 40
    product = make_product(brand=brand, product_name=name, variant_size=None)
    assert build_search_terms(product) == [f"{brand} {name}"]


def test_create_batches():
    batches = create_batches(list(range(25)), 10)
    assert [len(b) for b in batches] == [10, 10, 5]
    assert batches[2] == [20, 21, 22, 23, 24]
    assert create_batches([], 10) == []


def test_create_batches_rejects_non_positive_size():
    with pytest.raises(ValueError):
        create_batches([1, 2], 0)
