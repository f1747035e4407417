import json

import pytest

from invoice_extract.config import LlmConfig
from invoice_extract.detectors import (
    DocParserJsonDetector,
    GenericMarkdownDetector,
    LlmAssistedDetector,
    TextBlockDetector,
    default_detectors,
    extract_title,
    strip_tags,
)
from invoice_extract.errors import LlmUnavailable
from invoice_extract.models import RawFile

from .conftest import MARKDOWN_INVOICE

LLM_REPLY = "Here you go:\n```json\n" + json.dumps(
    {
        "supplier_name": "Stationery Ltd",
        "invoice_date": "2025-01-15",
        "declared_total": 10,
        "items": [
            {"name": "Pen", "qty": 2, "unit_price": 5, "total": 10},
            {"qty": 1, "total": 3},
        ],
    }
) + "\n```"


def test_markdown_scores_above_text_blocks(markdown_file):
    assert GenericMarkdownDetector().can_parse([markdown_file]) == pytest.approx(0.58)
    assert TextBlockDetector().can_parse([markdown_file]) == 0.0
    assert DocParserJsonDetector().can_parse([markdown_file]) == 0.0


def test_markdown_parse(markdown_file):
    invoices = GenericMarkdownDetector().parse([markdown_file])
    assert len(invoices) == 1
    invoice = invoices[0]
    assert invoice.format_detected == "generic_markdown"
    assert invoice.supplier_name == "Invoice"
    assert [(i.name, i.qty, i.total) for i in invoice.items] == [("Pen", 2, 10), ("Book", 1, 20)]
    assert invoice.calc_total == 30.0


def test_merged_markdown_is_split_per_heading():
    section = MARKDOWN_INVOICE.replace("# Invoice", "# Invoice {n}")
    text = section.format(n=1) + "\n" + section.format(n=2)
    raw = RawFile(name="all_invoices.md", content=text)
    detector = GenericMarkdownDetector()
    assert detector.is_merged(raw, text)

    invoices = detector.parse([raw])
    assert [inv.source_file for inv in invoices] == ["all_invoices.md#part0", "all_invoices.md#part1"]
    assert [inv.supplier_name for inv in invoices] == ["Invoice 1", "Invoice 2"]


def test_docparser_scores_full_block_list(docparser_file):
    assert DocParserJsonDetector().can_parse([docparser_file]) == 1.0
    assert TextBlockDetector().can_parse([docparser_file]) == pytest.approx(0.2)


def test_docparser_parse(docparser_file):
    invoices = DocParserJsonDetector().parse([docparser_file])
    assert len(invoices) == 1
    invoice = invoices[0]
    assert invoice.source_file == "invoice_02_res.json"
    assert invoice.supplier_name == "供應商ABC"
    item = invoice.items[0]
    assert (item.name, item.qty, item.unit_price, item.total) == ("鞋", 2, 100, 200)
    assert invoice.calc_total == 200.0


def test_docparser_unwraps_result_envelope(docparser_file):
    wrapped = RawFile(name="invoice_02.json", content={"result": docparser_file.content})
    assert DocParserJsonDetector().can_parse([wrapped]) == 1.0
    assert len(DocParserJsonDetector().parse([wrapped])) == 1


def test_docparser_uses_companion_markdown_when_blocks_have_no_table():
    blocks = RawFile(
        name="inv_07_res.json",
        content={"parsing_res_list": [{"block_label": "text", "block_content": "Shop Name"}]},
    )
    md = RawFile(name="inv_07.md", content=MARKDOWN_INVOICE)
    invoices = DocParserJsonDetector().parse([blocks, md])
    assert len(invoices) == 1
    assert len(invoices[0].items) == 2
    assert invoices[0].supplier_name == "Shop Name"


def test_invalid_json_scores_zero():
    broken = RawFile(name="bad.json", content="{not json")
    assert DocParserJsonDetector().can_parse([broken]) == 0.0
    assert DocParserJsonDetector().parse([broken]) == []


def test_text_block_json(text_blocks_file):
    detector = TextBlockDetector()
    assert detector.can_parse([text_blocks_file]) == pytest.approx(0.8)

    invoice = detector.parse([text_blocks_file])[0]
    assert invoice.supplier_name == "ACME Trading Co"
    assert invoice.declared_total == 250.0
    assert [(i.name, i.qty, i.unit_price) for i in invoice.items] == [
        ("Widget", 2, 100),
        ("Gadget", 1, 50),
    ]


def test_text_block_plain_text_with_keywords():
    raw = RawFile(name="receipt.txt", content="Price list\nPen x2 @5\nTotal: 10")
    assert TextBlockDetector().can_parse([raw]) == pytest.approx(0.6)
    invoice = TextBlockDetector().parse([raw])[0]
    assert invoice.items[0].name == "Pen"
    assert invoice.declared_total == 10.0


def test_llm_detector_with_injected_completion(markdown_file):
    prompts = []

    def complete(prompt):
        prompts.append(prompt)
        return LLM_REPLY

    detector = LlmAssistedDetector(LlmConfig(api_key="test-key"), complete=complete)
    assert detector.enabled
    assert detector.can_parse([markdown_file]) == 0.3

    invoices = detector.parse([markdown_file])
    assert "| Pen | 2 | 5 | 10 |" in prompts[0]
    invoice = invoices[0]
    assert invoice.supplier_name == "Stationery Ltd"
    assert invoice.invoice_date == "2025-01-15"
    assert invoice.metadata["parser"] == "llm_assisted"
    assert [i.name for i in invoice.items] == ["Pen"]


def test_llm_detector_skips_unusable_replies(markdown_file):
    detector = LlmAssistedDetector(LlmConfig(api_key="test-key"), complete=lambda p: "sorry, no")
    assert detector.parse([markdown_file]) == []


def test_llm_detector_disabled_without_key(markdown_file):
    detector = LlmAssistedDetector(LlmConfig())
    assert not detector.enabled
    assert detector.can_parse([markdown_file]) == 0.0
    with pytest.raises(LlmUnavailable):
        detector.parse([markdown_file])


def test_default_detectors_order():
    assert [d.id for d in default_detectors()] == [
        "doc_parser_json",
        "generic_markdown",
        "text_block",
        "llm_assisted",
    ]


def test_helpers():
    assert strip_tags("<b>Hi</b>  there") == "Hi there"
    assert extract_title("## Shop A\ntext") == "Shop A"
    assert extract_title("| a | b |\nFirst line") == "First line"


def test_llm_items_without_qty_derive_it_from_total(markdown_file):
    reply = json.dumps({"supplier_name": "Shop", "items": [{"name": "Pen", "unit_price": 2.5, "total": 10}]})
    detector = LlmAssistedDetector(LlmConfig(api_key="test-key"), complete=lambda p: reply)
    item = detector.parse([markdown_file])[0].items[0]
    assert (item.qty, item.unit_price, item.total) == (4, 2.5, 10)


def test_pipe_table_without_outer_pipes():
    raw = RawFile(name="order.md", content="Name | Qty | Price | Total\n--- | --- | --- | ---\nPen | 2 | 5 | 10\n")
    assert GenericMarkdownDetector().can_parse([raw]) == pytest.approx(0.54)
    assert TextBlockDetector().can_parse([raw]) == 0.0
    item = GenericMarkdownDetector().parse([raw])[0].items[0]
    assert (item.name, item.qty, item.total) == ("Pen", 2, 10)
