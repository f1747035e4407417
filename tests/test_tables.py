from invoice_extract.models import TableGrid
from invoice_extract.tables import (
    extract_html_tables,
    extract_items,
    extract_markdown_tables,
    parse_html_table,
    parse_markdown_table,
    score_as_item_table,
    select_best_table,
)

CN_HEADER = ["款号", "名称", "数量", "单价", "金额"]


def test_colspan_repeats_text_across_spanned_columns():
    grid = parse_html_table(
        "<table><tr><th colspan='2'>Item</th><th>Qty</th></tr>"
        "<tr><td>A1</td><td>Widget</td><td>3</td></tr></table>"
    )
    assert grid.rows[0] == ["Item", "Item", "Qty"]
    assert grid.rows[0].count("Item") == 2


def test_rowspan_carries_text_into_following_row():
    grid = parse_html_table(
        "<table><tr><td rowspan='2'>Shoes</td><td>Red</td></tr>"
        "<tr><td>Blue</td></tr></table>"
    )
    assert grid.rows == [["Shoes", "Red"], ["Shoes", "Blue"]]


def test_cell_text_is_cleaned():
    grid = parse_html_table("<table><tr><td> a<br>b </td><td>---</td></tr></table>")
    assert grid.rows == [["a b", ""]]


def test_no_table():
    assert parse_html_table("just text") is None
    assert parse_html_table("<table></table>") is None
    assert extract_html_tables("") == []


def test_nested_tables_are_returned_separately():
    html = (
        "<table><tr><td>outer</td><td>"
        "<table><tr><td>inner</td></tr></table>"
        "</td></tr></table>"
    )
    grids = extract_html_tables(html)
    assert len(grids) == 2
    assert grids[0].rows[0][0] == "outer"
    assert grids[1].rows == [["inner"]]


def test_markdown_table():
    grid = parse_markdown_table("| Name | Qty |\n|---|---|\n| Pen | 2 |\n")
    assert grid.rows == [["Name", "Qty"], ["Pen", "2"]]


def test_markdown_header_only_is_rejected():
    assert parse_markdown_table("| Name | Qty |\n|---|---|\n") is None


def test_markdown_multiple_tables():
    text = "| A | B |\n|---|---|\n| 1 | 2 |\n\ntext\n\n| C | D |\n|:-:|--|\n| 3 | 4 |\n"
    grids = extract_markdown_tables(text)
    assert [g.rows[0] for g in grids] == [["A", "B"], ["C", "D"]]


def test_extract_items_from_mapped_row():
    grid = TableGrid(rows=[CN_HEADER, ["A1", "Widget", "3", "10", "30"]])
    items = extract_items(grid)
    assert len(items) == 1
    item = items[0]
    assert (item.code, item.name, item.qty, item.unit_price, item.total) == ("A1", "Widget", 3, 10, 30)


def test_extract_items_skips_summary_rows_and_derives_values():
    grid = TableGrid(
        rows=[
            CN_HEADER,
            ["B2", "Gadget", "", "5", "20"],
            ["C3", "Thing", "", "", "12"],
            ["D4", "Bolt", "4", "2.5", ""],
            ["合计", "", "", "", "62"],
        ]
    )
    items = extract_items(grid)
    assert [i.code for i in items] == ["B2", "C3", "D4"]
    assert items[0].qty == 4
    assert (items[1].qty, items[1].unit_price) == (1, 12)
    assert items[2].total == 10


def test_extract_items_never_returns_nonpositive_qty():
    grid = TableGrid(
        rows=[
            CN_HEADER,
            ["E5", "Neg", "-2", "5", "10"],
            ["F6", "Zero", "0", "", ""],
            ["G7", "Blank", "", "", ""],
        ]
    )
    items = extract_items(grid)
    assert items
    assert all(i.qty > 0 for i in items)


def test_color_and_size_join_the_name():
    grid = TableGrid(
        rows=[
            ["款号", "名称", "颜色", "尺码", "数量", "单价", "金额"],
            ["S1", "Shirt", "Red", "M", "1", "9", "9"],
        ]
    )
    item = extract_items(grid)[0]
    assert item.name == "Shirt - Red [M]"
    assert item.metadata["color"] == "Red"


def test_table_scoring_and_selection():
    items_table = TableGrid(rows=[["Name", "Qty", "Price", "Total"], ["Pen", "2", "5", "10"]])
    contact_table = TableGrid(rows=[["Phone", "Email"], ["123", "a@b.c"]])
    assert score_as_item_table(items_table) > 0.3
    assert score_as_item_table(contact_table) < 0.3
    assert select_best_table([contact_table, items_table]) is items_table
    assert select_best_table([contact_table]) is None


def test_currency_prefix_is_recorded():
    grid = TableGrid(rows=[["Name", "Qty", "Total"], ["Pen", "2", "HK$ 10.00"]])
    item = extract_items(grid)[0]
    assert item.total == 10.0
    assert item.metadata["currency"] == "HKD"


def test_headerless_table_with_decimal_prices():
    grid = TableGrid(rows=[["A", "B", "C", "D"], ["Widget", "3", "10.50", "31.50"]])
    item = extract_items(grid)[0]
    assert (item.name, item.qty, item.unit_price, item.total) == ("Widget", 3, 10.5, 31.5)
