import pytest

from invoice_extract.config import RegistryConfig
from invoice_extract.models import RawFile
from invoice_extract.registry import ParserRegistry

MARKDOWN_INVOICE = """# Invoice

| Name | Qty | Price | Total |
|---|---|---|---|
| Pen | 2 | 5 | 10 |
| Book | 1 | 20 | 20 |
"""

DOCPARSER_INVOICE = {
    "parsing_res_list": [
        {"block_label": "text", "block_content": "供應商ABC", "block_bbox": [10, 10, 200, 40]},
        {
            "block_label": "table",
            "block_content": (
                "<table><tr><td>品名</td><td>數量</td><td>單價</td><td>金額</td></tr>"
                "<tr><td>鞋</td><td>2</td><td>100</td><td>200</td></tr></table>"
            ),
            "block_bbox": [10, 60, 400, 200],
        },
    ]
}

TEXT_ONLY_BLOCKS = {
    "parsing_res_list": [
        {"block_label": "title", "block_content": "ACME Trading Co", "block_bbox": [0, 0, 300, 30]},
        {"block_label": "text", "block_content": "Widget x2 @100", "block_bbox": [0, 80, 300, 100]},
        {"block_label": "text", "block_content": "Gadget x1 @50", "block_bbox": [0, 160, 300, 180]},
        {"block_label": "text", "block_content": "Total: 250", "block_bbox": [0, 240, 300, 260]},
    ]
}


@pytest.fixture
def registry():
    return ParserRegistry(RegistryConfig())


@pytest.fixture
def markdown_file():
    return RawFile(name="invoice_01.md", content=MARKDOWN_INVOICE)


@pytest.fixture
def docparser_file():
    return RawFile(name="invoice_02_res.json", content=DOCPARSER_INVOICE)


@pytest.fixture
def text_blocks_file():
    return RawFile(name="receipt_03.json", content=TEXT_ONLY_BLOCKS)


@pytest.fixture
def plain_notes_file():
    return RawFile(name="notes.txt", content="hello world, nothing to see here")
