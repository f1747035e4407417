import pytest

from invoice_extract.config import ValidatorConfig
from invoice_extract.models import Invoice
from invoice_extract.validator import (
    InvoiceValidator,
    error_code,
    generate_item_code,
    validate_invoices,
)


def _codes(messages):
    return [error_code(m) for m in messages]


def _invoice(items, **fields):
    data = {"source_file": "test.md", "supplier_name": "Shop", "items": items}
    data.update(fields)
    return data


@pytest.fixture
def validator():
    return InvoiceValidator()


def test_repairs_and_is_idempotent(validator):
    raw = _invoice(
        [
            {"name": "Pen", "qty": 2, "unit_price": 5},
            {"name": "Book", "total": 20},
        ],
        invoice_date="2025/3/9",
        declared_total="30",
    )
    first = validator.validate(raw)
    assert first.valid
    invoice = first.invoice
    assert invoice.invoice_date == "2025-03-09"
    assert invoice.declared_total == 30.0
    assert invoice.calc_total == 30.0
    assert [(i.code, i.qty, i.unit_price, i.total) for i in invoice.items] == [
        ("PEN", 2, 5, 10),
        ("BOOK", 1, 20, 20),
    ]
    assert "calculated" in _codes(first.fixes)
    assert "normalized" in _codes(first.fixes)

    second = validator.validate(invoice)
    assert second.invoice == invoice
    assert second.fixes == []


def test_qty_derived_from_total_and_price(validator):
    result = validator.validate(_invoice([{"name": "Pen", "unit_price": 2.5, "total": 10}]))
    assert result.invoice.items[0].qty == 4
    assert "calculated: item 0 qty = 4.0" in result.fixes


def test_ocr_numeric_strings(validator):
    result = validator.validate(_invoice([{"name": "Pen", "qty": "1O", "unit_price": "2", "total": "2O"}]))
    item = result.invoice.items[0]
    assert (item.qty, item.total) == (10, 20)
    assert _codes(result.fixes).count("ocr_fix") == 2
    assert not any(w.startswith("item_total_mismatch") for w in result.warnings)


def test_ocr_digits_in_supplier_name(validator):
    result = validator.validate(_invoice([{"name": "Pen", "total": 1}], supplier_name="Shop 1O1"))
    assert result.invoice.supplier_name == "Shop 101"


def test_unparseable_date_is_a_warning(validator):
    result = validator.validate(_invoice([{"name": "Pen", "total": 5}], invoice_date="someday"))
    assert result.valid
    assert result.invoice.invoice_date is None
    assert "date_unparseable" in _codes(result.warnings)


def test_negative_values_are_errors():
    results, summary = validate_invoices(
        [_invoice([{"name": "Pen", "qty": -2, "unit_price": 5, "total": 10}])]
    )
    result = results[0]
    assert not result.valid
    assert result.invoice.items[0].qty == -2
    assert summary.invalid_invoices == 1
    assert summary.error_counts == {"negative_value": 1}


@pytest.mark.parametrize(
    "calc, flagged",
    [(100.06, False), (100.50, False), (103.0, True)],
)
def test_total_mismatch_needs_both_tolerances(validator, calc, flagged):
    raw = _invoice([{"name": "Pen", "qty": 1, "unit_price": calc, "total": calc}], declared_total=100)
    result = validator.validate(raw)
    assert ("total_mismatch" in _codes(result.warnings)) is flagged
    assert result.valid


def test_small_absolute_difference_is_tolerated(validator):
    raw = _invoice([{"name": "Pen", "qty": 1, "unit_price": 1.04, "total": 1.04}], declared_total=1)
    assert "total_mismatch" not in _codes(validator.validate(raw).warnings)


def test_missing_declared_total(validator):
    result = validator.validate(_invoice([{"name": "Pen", "total": 5}]))
    assert "missing_declared_total" in _codes(result.warnings)
    assert result.valid


def test_nonpositive_calculated_total(validator):
    result = validator.validate(_invoice([{"name": "Free gift", "qty": 1, "unit_price": 0, "total": 0}]))
    assert not result.valid
    assert "calc_total_nonpositive" in _codes(result.errors)


def test_items_must_be_a_list(validator):
    result = validator.validate({"source_file": "x", "items": "oops"})
    assert not result.valid
    assert "structure" in _codes(result.errors)
    assert "no_items" in _codes(result.warnings)


def test_non_object_item(validator):
    result = validator.validate(_invoice([1, {"name": "Pen", "total": 5}]))
    assert "structure: item 0 is not an object" in result.errors
    assert len(result.invoice.items) == 1


def test_name_taken_from_code(validator):
    result = validator.validate(_invoice([{"code": "a1", "qty": 1, "unit_price": 2, "total": 2}]))
    item = result.invoice.items[0]
    assert (item.code, item.name) == ("A1", "A1")


def test_item_without_name_or_code_is_dropped(validator):
    result = validator.validate(_invoice([{"qty": 1, "total": 5}]))
    assert result.invoice.items == []
    assert "dropped" in _codes(result.fixes)


def test_range_limits_are_configurable():
    validator = InvoiceValidator(ValidatorConfig(max_qty=10))
    result = validator.validate(_invoice([{"name": "Pen", "qty": 50, "unit_price": 1, "total": 50}]))
    assert "value_too_high" in _codes(result.warnings)


def test_item_total_mismatch(validator):
    result = validator.validate(_invoice([{"name": "Pen", "qty": 2, "unit_price": 5, "total": 12}]))
    assert "item_total_mismatch" in _codes(result.warnings)


def test_generate_item_code():
    assert generate_item_code("Blue Widget!") == "BLUEWIDGET"
    code = generate_item_code("***")
    assert code.startswith("ITEM") and len(code) == 10
    assert generate_item_code("***") == code


def test_batch_summary(validator):
    good = _invoice([{"name": "Pen", "total": 5}], declared_total=5)
    bad = Invoice(source_file="b.md", items=[])
    batch = validator.validate_batch([good, bad, {"items": None}])
    assert batch.summary.total_invoices == 3
    assert batch.summary.valid_invoices == 2
    assert batch.summary.fixed_invoices == 1
    assert batch.summary.error_counts == {"structure": 1}
    assert len(batch.invoices) == 3


def test_generated_code_survives_a_second_run(validator):
    first = validator.validate(_invoice([{"name": "ISO 100", "qty": 1, "unit_price": 5, "total": 5}]))
    assert first.invoice.items[0].code == "ITEMISO100"

    second = validator.validate(first.invoice)
    assert second.fixes == []
    assert second.invoice == first.invoice


def test_glyph_only_names_get_prefixed_codes():
    assert generate_item_code("SOB 1") == "ITEMSOB1"
    assert generate_item_code("100") == "100"
