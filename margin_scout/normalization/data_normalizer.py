"""
Supplier Data Normalizer.

Turns raw supplier rows (one dict per spreadsheet row) into
NormalizedProductData using a ColumnMapping that says which column holds
which field. Rows with a missing brand, name or wholesale price are
rejected with errors; suspicious values only produce warnings.

Classes:
    CleaningRules: String cleanup options.
    ColumnMapping: Field -> source column name.
    ValidationIssue: One error or warning for one row.
    ValidationResult: Outcome of normalizing a whole sheet.
    DataNormalizer: The row normalizer.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from margin_scout.exceptions import NormalizationError
from margin_scout.models.models import NormalizedProductData
from margin_scout.utils import parse_price

logger = logging.getLogger(__name__)

VALID_EAN_LENGTHS = (8, 12, 13, 14)

CURRENCY_ALIASES = {
    "€": "EUR",
    "EURO": "EUR",
    "EUROS": "EUR",
    "$": "USD",
    "US$": "USD",
    "DOLLAR": "USD",
    "DOLLARS": "USD",
    "£": "GBP",
    "POUND": "GBP",
    "POUNDS": "GBP",
    "CHF.": "CHF",
    "FR.": "CHF",
    "KR": "SEK",
    "ZŁ": "PLN",
    "ZL": "PLN",
}

UNIT_ALIASES = {
    "milliliters": "ml",
    "milliliter": "ml",
    "millilitres": "ml",
    "millilitre": "ml",
    "ml": "ml",
    "cl": "cl",
    "liters": "l",
    "liter": "l",
    "litres": "l",
    "litre": "l",
    "ltr": "l",
    "l": "l",
    "kilograms": "kg",
    "kilogram": "kg",
    "kg": "kg",
    "grams": "g",
    "gram": "g",
    "gr": "g",
    "g": "g",
    "oz": "oz",
}

_UNITS = "|".join(sorted(UNIT_ALIASES, key=len, reverse=True))
SIZE_PATTERN = re.compile(rf"(\d+(?:[.,]\d+)?)\s*({_UNITS})(?![a-z])", re.IGNORECASE)
MULTIPACK_PATTERN = re.compile(rf"(\d+)\s*[x×]\s*(\d+(?:[.,]\d+)?)\s*({_UNITS})(?![a-z])", re.IGNORECASE)

PACK_WORDS = {"single": 1, "twin": 2, "duo": 2, "triple": 3, "trio": 3, "quad": 4}

UNAVAILABLE_WORDS = ("unavailable", "out of stock", "not available", "niet beschikbaar",
                     "uitverkocht", "inactive", "no", "nee", "nein", "false", "0")
AVAILABLE_WORDS = ("available", "in stock", "op voorraad", "beschikbaar", "active",
                   "yes", "ja", "oui", "true", "1")


class CleaningRules(BaseModel):
    trim_whitespace: bool = True
    normalize_case: Optional[Literal["titlecase", "lowercase", "uppercase"]] = "titlecase"
    normalize_sizes: bool = True
    parse_multipacks: bool = True
    remove_special_chars: bool = False


class ColumnMapping(BaseModel):
    brand: str
    product_name: str
    wholesale_price: str
    variant_size: Optional[str] = None
    ean: Optional[str] = None
    currency: Optional[str] = None
    pack_size: Optional[str] = None
    supplier: Optional[str] = None
    last_purchase_price: Optional[str] = None
    availability: Optional[str] = None
    notes: Optional[str] = None


class ValidationIssue(BaseModel):
    row: int
    field: str
    message: str
    data: Optional[dict[str, Any]] = None


class ValidationResult(BaseModel):
    products: list[NormalizedProductData] = Field(default_factory=list)
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    total_rows: int = 0

    @property
    def valid_rows(self) -> int:
        return len(self.products)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def title_case(text: str) -> str:
    """Capitalize each word, lowercase the rest. Unlike str.title(), "N°5" stays "N°5"."""
    return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), text)


def normalize_size(value: Optional[str]) -> tuple[Optional[str], int]:
    """
    Canonical size string and multipack count.

    Example:
        >>> normalize_size("100 ML")
        ('100ml', 1)
        >>> normalize_size("1,5 L")
        ('1.5l', 1)
        >>> normalize_size("3x50ml")
        ('50ml', 3)
    """
    if not value or not value.strip():
        return None, 1

    text = value.strip()
    multipack = MULTIPACK_PATTERN.search(text)
    if multipack:
        count, amount, unit = multipack.groups()
        return f"{_clean_amount(amount)}{UNIT_ALIASES[unit.lower()]}", max(int(count), 1)

    match = SIZE_PATTERN.search(text)
    if match:
        amount, unit = match.groups()
        return f"{_clean_amount(amount)}{UNIT_ALIASES[unit.lower()]}", 1

    return re.sub(r"\s+", "", text.lower()), 1


def _clean_amount(amount: str) -> str:
    amount = amount.replace(",", ".")
    if "." in amount:
        amount = amount.rstrip("0").rstrip(".")
    return amount


class DataNormalizer:
    """
    Normalizes supplier rows into catalog products.

    Example:
        >>> normalizer = DataNormalizer()
        >>> mapping = ColumnMapping(brand="Merk", product_name="Naam", wholesale_price="Prijs")
        >>> product, errors, warnings = normalizer.normalize_row(
        ...     {"Merk": "chanel", "Naam": "n°5 eau de parfum", "Prijs": "€ 79,50"}, mapping, 1)
        >>> product.brand, product.wholesale_price
        ('Chanel', Decimal('79.50'))
    """

    def __init__(self, cleaning_rules: Optional[CleaningRules] = None, **overrides):
        self.cleaning_rules = (cleaning_rules or CleaningRules()).model_copy(update=overrides)

    def get_cleaning_rules(self) -> CleaningRules:
        return self.cleaning_rules.model_copy()

    def update_cleaning_rules(self, **changes) -> None:
        self.cleaning_rules = CleaningRules.model_validate({**self.cleaning_rules.model_dump(), **changes})

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------
    def check_columns(self, columns: list[str], mapping: ColumnMapping) -> None:
        """Raise NormalizationError when a required mapped column is absent."""
        present = set(columns)
        required = (mapping.brand, mapping.product_name, mapping.wholesale_price)
        missing = sorted(name for name in required if name not in present)
        if missing:
            raise NormalizationError(missing)

    def normalize_row(self, raw: dict[str, Any], mapping: ColumnMapping, row_number: int,
                      supplier_id: str = "") -> tuple[Optional[NormalizedProductData],
                                                      list[ValidationIssue], list[ValidationIssue]]:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        def column(name: Optional[str]) -> str:
            if not name:
                return ""
            value = raw.get(name)
            return "" if value is None else str(value)

        brand = self.clean_string(column(mapping.brand))
        product_name = self.clean_string(column(mapping.product_name))
        wholesale_price = self.parse_amount(column(mapping.wholesale_price))

        if not brand:
            errors.append(ValidationIssue(row=row_number, field="brand", message="Brand is required", data=raw))
        if not product_name:
            errors.append(ValidationIssue(row=row_number, field="product_name",
                                          message="Product name is required", data=raw))
        if wholesale_price is None:
            errors.append(ValidationIssue(row=row_number, field="wholesale_price",
                                          message="Wholesale price is required and must be a valid number",
                                          data=raw))
        if errors:
            return None, errors, warnings

        variant_size, multipack = None, 1
        raw_size = column(mapping.variant_size)
        if self.cleaning_rules.normalize_sizes:
            variant_size, multipack = normalize_size(raw_size)
            if not self.cleaning_rules.parse_multipacks:
                multipack = 1
        elif raw_size.strip():
            variant_size = raw_size.strip()

        ean = self.clean_ean(column(mapping.ean))
        if ean and len(ean) not in VALID_EAN_LENGTHS:
            warnings.append(ValidationIssue(
                row=row_number, field="ean",
                message=f"EAN format appears invalid ({len(ean)} digits, expected 8, 12, 13 or 14)",
            ))

        pack_size = self.parse_pack_size(column(mapping.pack_size)) if mapping.pack_size else multipack

        last_purchase_price = None
        if mapping.last_purchase_price:
            last_purchase_price = self.parse_amount(column(mapping.last_purchase_price))
            if last_purchase_price is None and column(mapping.last_purchase_price).strip():
                warnings.append(ValidationIssue(row=row_number, field="last_purchase_price",
                                                message="Last purchase price could not be parsed"))

        try:
            product = NormalizedProductData(
                supplier_id=supplier_id,
                brand=brand,
                product_name=product_name,
                variant_size=variant_size,
                ean=ean,
                wholesale_price=wholesale_price,
                currency=self.normalize_currency(column(mapping.currency)),
                pack_size=pack_size,
                supplier_name=self.clean_string(column(mapping.supplier)),
                last_purchase_price=last_purchase_price,
                availability=self.parse_availability(column(mapping.availability)),
                notes=column(mapping.notes).strip() or None,
            )
        except ValidationError as e:
            errors.append(ValidationIssue(row=row_number, field="general",
                                          message=f"Unexpected error during normalization: {e}", data=raw))
            return None, errors, warnings

        return product, errors, warnings

    def normalize_rows(self, rows: list[dict[str, Any]], mapping: ColumnMapping,
                       supplier_id: str = "", first_row_number: int = 2) -> ValidationResult:
        """Normalize a sheet; row numbers start at 2 to match a spreadsheet with a header row."""
        result = ValidationResult(total_rows=len(rows))
        for offset, raw in enumerate(rows):
            product, errors, warnings = self.normalize_row(raw, mapping, first_row_number + offset, supplier_id)
            if product is not None:
                result.products.append(product)
            result.errors.extend(errors)
            result.warnings.extend(warnings)

        logger.info(
            "Normalized %d/%d rows (%d errors, %d warnings)",
            result.valid_rows, result.total_rows, len(result.errors), len(result.warnings),
        )
        return result

    # -------------------------------------------------------------------------
    # Field cleanup
    # -------------------------------------------------------------------------
    def clean_string(self, value: str) -> str:
        if not value:
            return ""

        cleaned = value
        if self.cleaning_rules.trim_whitespace:
            cleaned = re.sub(r"\s+", " ", cleaned).strip()
        if self.cleaning_rules.remove_special_chars:
            cleaned = re.sub(r"[^\w\s\-.]", "", cleaned)

        case = self.cleaning_rules.normalize_case
        if case == "lowercase":
            cleaned = cleaned.lower()
        elif case == "uppercase":
            cleaned = cleaned.upper()
        elif case == "titlecase":
            cleaned = title_case(cleaned)
        return cleaned

    @staticmethod
    def clean_ean(value: str) -> Optional[str]:
        digits = re.sub(r"\D", "", value or "")
        return digits or None

    @staticmethod
    def parse_amount(value: str) -> Optional[Decimal]:
        price = parse_price(value, decimal_separator=",")
        if price is None or price < 0:
            return None
        return price.quantize(Decimal("0.01"))

    @staticmethod
    def normalize_currency(value: str) -> str:
        code = (value or "").strip().upper()
        if not code:
            return "EUR"
        return CURRENCY_ALIASES.get(code, code)

    @staticmethod
    def parse_pack_size(value: str) -> int:
        if not value:
            return 1
        match = re.search(r"\d+", value)
        if match:
            return max(int(match.group()), 1)
        lowered = value.lower()
        for word, size in PACK_WORDS.items():
            if word in lowered:
                return size
        return 1

    @staticmethod
    def parse_availability(value: str) -> bool:
        """Unclear values count as available."""
        lowered = (value or "").strip().lower()
        if not lowered:
            return True
        words = set(re.findall(r"\w+", lowered))
        for marker in UNAVAILABLE_WORDS:
            if (" " in marker and marker in lowered) or marker in words:
                return False
        for marker in AVAILABLE_WORDS:
            if (" " in marker and marker in lowered) or marker in words:
                return True
        return True
