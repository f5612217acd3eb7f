"""Parser tests against fixed vendor email fixtures."""

from datetime import datetime
from decimal import Decimal

import pytest

from simbridge.services.parser.schemas import RawEmail
from simbridge.services.parser.service import EmailParser, format_order_summary
from simbridge.services.parser.strategies import (
    HtmlStrategy,
    TextStrategy,
    assemble_order,
    match_line,
    parse_date,
    parse_price,
    parse_quantity,
)

from conftest import DUMMY_HTML, DUMMY_TEXT, VENDOR_SENDER, VENDOR_SUBJECT


TABLE_HTML = """
<html><body>
  <table>
    <tr><td>Reference Number</td><td>ABC123XYZ</td></tr>
    <tr><td>Purchase Date</td><td>12 Feb 2026 14:30</td></tr>
    <tr><td>Reseller Name</td><td>Adventure Travel</td></tr>
    <tr><td>Customer Name</td><td>Budi Santoso</td></tr>
    <tr><td>Customer Email</td><td>Budi.Santoso@Example.COM</td></tr>
    <tr><td>Alternate Email</td><td>-</td></tr>
    <tr><td>Mobile Number</td><td>+62 811 0000 111</td></tr>
    <tr><td>Payment Collection Status</td><td>Collected</td></tr>
  </table>
  <table>
    <tr><th>Confirmation Code</th><td>CODE0001</td></tr>
    <tr><th>Product Name</th><td>eSIM Japan 7 Days</td></tr>
    <tr><th>SKU</th><td>WM-JP-7-5GB</td></tr>
    <tr><th>Visit Date</th><td>20 Feb 2026</td></tr>
    <tr><th>Quantity</th><td>2</td></tr>
    <tr><th>Unit Price</th><td>IDR 250.000</td></tr>
  </table>
  <table>
    <tr><th>Confirmation Code</th><td>CODE0002</td></tr>
    <tr><th>Product Name</th><td>eSIM Korea 5 Days</td></tr>
    <tr><th>SKU</th><td>WM-KR-5-3GB</td></tr>
    <tr><th>Quantity</th><td>zero</td></tr>
  </table>
</body></html>
"""


@pytest.fixture
def parser():
    return EmailParser(sender_pattern="globaltix.com", subject_keyword="ticket")


def test_dummy_email_parses(parser, vendor_email):
    """The sample vendor email yields one complete item."""

    order = parser.parse(vendor_email())

    assert order is not None
    assert order.reference_number == "ZRPQG8VEGT"
    assert order.confirmation_codes == ["GTMSRLOW"]
    item = order.items[0]
    assert item.sku == "WM-AUNZ-15-10GB"
    assert item.quantity == 1
    assert item.unit_price == Decimal("1776500")
    assert item.product_name == "eSIM Australia New Zealand"


def test_html_and_text_strategies_agree(parser):
    """Both body formats of the same email parse to the same order."""

    from_html = parser.parse(RawEmail(sender=VENDOR_SENDER, subject=VENDOR_SUBJECT, html=DUMMY_HTML))
    from_text = parser.parse(RawEmail(sender=VENDOR_SENDER, subject=VENDOR_SUBJECT, text=DUMMY_TEXT))

    assert from_html is not None
    assert from_html == from_text


def test_parsing_is_deterministic(parser, vendor_email):
    """Parsing the same email twice gives equal results."""

    email = vendor_email(text="", html=TABLE_HTML)

    assert parser.parse(email) == parser.parse(email)


def test_table_rows_are_read_as_label_value_pairs(parser, vendor_email):
    """Two-cell table rows map onto order and item fields."""

    order = parser.parse(vendor_email(text="", html=TABLE_HTML))

    assert order.reference_number == "ABC123XYZ"
    assert order.purchase_date == datetime(2026, 2, 12, 14, 30)
    assert order.reseller_name == "Adventure Travel"
    assert order.customer_email == "budi.santoso@example.com"
    assert order.mobile_number == "+62 811 0000 111"
    assert order.payment_status == "Collected"
    assert order.confirmation_codes == ["CODE0001", "CODE0002"]

    first, second = order.items
    assert first.quantity == 2
    assert first.unit_price == Decimal("250000")
    assert first.visit_date == datetime(2026, 2, 20)
    assert second.quantity == 1
    assert second.unit_price is None


def test_text_fallback_when_html_has_no_order(parser, vendor_email):
    """Plain text is used when the HTML body has no order."""

    email = vendor_email(html="<html><body><p>Thanks for your purchase!</p></body></html>")

    order = parser.parse(email)

    assert order is not None
    assert order.reference_number == "ZRPQG8VEGT"


def test_duplicate_confirmation_codes_keep_first_occurrence():
    """A repeated code keeps the fields of its first block."""

    text = "\n".join(
        [
            "Reference Number: REF1",
            "Confirmation Code: AAAAAA1",
            "SKU: WM-FIRST",
            "Confirmation Code: BBBBBB2",
            "SKU: WM-SECOND",
            "Confirmation Code: AAAAAA1",
            "SKU: WM-REPEATED",
        ]
    )

    order = assemble_order(TextStrategy().extract(text))

    assert order.confirmation_codes == ["AAAAAA1", "BBBBBB2"]
    assert order.items[0].sku == "WM-FIRST"


def test_nested_markup_visited_twice_yields_one_item():
    html = """
    <div>
      <div><span>Reference Number: REF2</span></div>
      <div><p>Confirmation Code: CCCCCC3</p><p>SKU: WM-NESTED</p></div>
      <blockquote><p>Confirmation Code: CCCCCC3</p><p>SKU: WM-NESTED</p></blockquote>
    </div>
    """

    order = assemble_order(HtmlStrategy().extract(html))

    assert order.confirmation_codes == ["CCCCCC3"]
    assert order.items[0].sku == "WM-NESTED"


@pytest.mark.parametrize(
    "email",
    [
        RawEmail(sender=VENDOR_SENDER, subject=VENDOR_SUBJECT),
        RawEmail(sender="promo@shop.example", subject=VENDOR_SUBJECT, text=DUMMY_TEXT),
        RawEmail(sender=VENDOR_SENDER, subject="Your invoice", text=DUMMY_TEXT),
        RawEmail(sender=VENDOR_SENDER, subject=VENDOR_SUBJECT, text="Confirmation Code: GTMSRLOW\nSKU: WM-1"),
        RawEmail(sender=VENDOR_SENDER, subject=VENDOR_SUBJECT, text="Reference Number: ZRPQG8VEGT"),
    ],
    ids=["empty-body", "wrong-sender", "wrong-subject", "no-reference", "no-items"],
)
def test_rejected_emails_return_none(parser, email):
    """Non-vendor or incomplete emails parse to None."""

    assert parser.parse(email) is None


def test_item_without_sku_is_still_parsed(parser, vendor_email):
    """Parsing keeps items without SKU; storage decides to skip them."""

    text = "Reference Number: REF3\nConfirmation Code: DDDDDD4\nProduct: eSIM Thailand"

    order = parser.parse(vendor_email(text=text, html=""))

    assert order.items[0].sku is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1,776,500", Decimal("1776500")),
        ("IDR 1.776.500", Decimal("1776500")),
        ("12.50", Decimal("12.50")),
        ("1,234.50", Decimal("1234.50")),
        ("", None),
        ("free", None),
    ],
)
def test_parse_price(raw, expected):
    """Thousands separators and decimals are told apart."""

    assert parse_price(raw) == expected


def test_unparseable_dates_become_none():
    """Bad dates become None; timezone notes in brackets are dropped."""

    assert parse_date("sometime next week") is None
    assert parse_date("12 Feb 2026 (GMT+8)") == datetime(2026, 2, 12)


@pytest.mark.parametrize("raw,expected", [("3", 3), ("0", 1), ("-2", 1), ("", 1), (None, 1), ("2 pcs", 2)])
def test_parse_quantity(raw, expected):
    """Missing or non-positive quantities default to 1."""

    assert parse_quantity(raw) == expected


def test_format_order_summary(parser, vendor_email):
    """Summary has a header line and one line per item."""

    summary = format_order_summary(parser.parse(vendor_email()))

    assert summary.splitlines()[0].startswith("ZRPQG8VEGT")
    assert "GTMSRLOW sku=WM-AUNZ-15-10GB qty=1" in summary


VENDOR_LAYOUT_HTML = """
<html><body>
  <p>Reference Number: ZRPQG8VEGT</p>
  <p>Customer Email: jane@example.com</p>
  <table>
    <tr>
      <td>Confirmation Code: GTMSRLOW eSIM Australia New Zealand 15 Days WM-AUNZ-15-10GB
          Visit Date: 20 Feb 2026 Quantity: 1 IDR 1,776,500</td>
    </tr>
  </table>
</body></html>
"""

VENDOR_SUMMARY_TEXT = """
Reference Number: ZRPQG8VEGT
Confirmation Code GTMSRLOW
eSIM Australia New Zealand
Visit Date: 20 Feb 2026
UNIT PRICE IDR 1.776.500
Summary
2 (15 Days) - eSIM Australia New Zealand WM-AUNZ-15-10GB
Payment Collection Status: Collected
"""


def test_unlabeled_item_block_is_read(parser, vendor_email):
    """The vendor's one-cell item block yields SKU, price, quantity and date."""

    order = parser.parse(vendor_email(text="", html=VENDOR_LAYOUT_HTML))

    assert order.confirmation_codes == ["GTMSRLOW"]
    item = order.items[0]
    assert item.sku == "WM-AUNZ-15-10GB"
    assert item.unit_price == Decimal("1776500")
    assert item.quantity == 1
    assert item.visit_date == datetime(2026, 2, 20)
    assert item.product_name == "eSIM Australia New Zealand 15 Days"


def test_unlabeled_item_block_is_stored(components, parser, vendor_email):
    """An order in the vendor layout is saved with its item, not failed."""

    order = parser.parse(vendor_email(text="", html=VENDOR_LAYOUT_HTML))

    saved = components.orders.save_parsed_order(order)

    assert saved.saved_codes == ["GTMSRLOW"]
    assert saved.skipped == []
    assert components.orders.get_order_by_reference("ZRPQG8VEGT").status == "RECEIVED"


def test_summary_line_supplies_quantity_variant_and_product(parser, vendor_email):
    """`2 (15 Days) - product SKU` fills the fields no label provided."""

    order = parser.parse(vendor_email(text=VENDOR_SUMMARY_TEXT, html=""))

    item = order.items[0]
    assert item.confirmation_code == "GTMSRLOW"
    assert item.quantity == 2
    assert item.product_variant == "15 Days"
    assert item.product_name == "eSIM Australia New Zealand"
    assert item.sku == "WM-AUNZ-15-10GB"
    assert item.unit_price == Decimal("1776500")
    assert item.visit_date == datetime(2026, 2, 20)
    assert order.payment_status == "Collected"


def test_labeled_values_win_over_unlabeled_block():
    """A `SKU:` line beats a different WM- token in the item text."""

    text = "\n".join(
        [
            "Reference Number: REF4",
            "Confirmation Code: EEEEEE5 eSIM Japan WM-FROM-TEXT IDR 99.000",
            "SKU: WM-LABELED",
            "Price: 120000",
        ]
    )

    item = assemble_order(TextStrategy().extract(text)).items[0]

    assert item.sku == "WM-LABELED"
    assert item.unit_price == Decimal("120000")
    assert item.product_name == "eSIM Japan"


def test_colon_label_replaces_earlier_prose_line():
    """`Price list attached` must not shadow a later `Price: 100`."""

    text = "\n".join(
        [
            "Price list attached",
            "Product details below",
            "Reference Number: REF5",
            "Confirmation Code: FFFFFF6",
            "Product: eSIM Japan",
            "SKU: WM-JP-7-5GB",
            "Price: 100",
        ]
    )

    item = assemble_order(TextStrategy().extract(text)).items[0]

    assert item.unit_price == Decimal("100")
    assert item.product_name == "eSIM Japan"


def test_first_colon_label_still_wins():
    """Two labeled values for one field keep the first."""

    text = "Reference Number: REF6\nConfirmation Code: GGGGGG7\nSKU: WM-ONE\nSKU: WM-TWO"

    item = assemble_order(TextStrategy().extract(text)).items[0]

    assert item.sku == "WM-ONE"


def test_match_line_marks_whitespace_separated_labels():
    """Only separator-delimited labels count as labeled."""

    assert match_line("Price: 100") == ("unit_price", "100", True)
    assert match_line("Price list attached") == ("unit_price", "list attached", False)
    assert match_line("Thanks for your purchase") is None
