"""Label/value extraction strategies for vendor purchase emails.

Both strategies reduce an email body to an ordered list of `Pair`s: labeled
values plus the unlabeled lines in between. `assemble_order` turns that list
into a `ParsedOrder`, so the HTML and plain-text paths always agree on shape
and value parsing.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from bs4 import BeautifulSoup
from bs4.element import NavigableString, Tag

from simbridge.services.parser.schemas import ParsedItem, ParsedOrder


ORDER_LABELS = {
    "reference number": "reference_number",
    "purchase date": "purchase_date",
    "reseller name": "reseller_name",
    "customer name": "customer_name",
    "customer email": "customer_email",
    "alternate email": "alternative_email",
    "alternative email": "alternative_email",
    "mobile number": "mobile_number",
    "payment collection status": "payment_status",
    "payment status": "payment_status",
    "remarks": "remarks",
}

ITEM_LABELS = {
    "confirmation code": "confirmation_code",
    "product name": "product_name",
    "product": "product_name",
    "product variant": "product_variant",
    "variant": "product_variant",
    "sku": "sku",
    "visit date": "visit_date",
    "quantity": "quantity",
    "qty": "quantity",
    "unit price": "unit_price",
    "price": "unit_price",
}

LABELS = {**ORDER_LABELS, **ITEM_LABELS}

# Longest labels first so "product name" wins over "product".
_LABEL_ALTERNATION = "|".join(re.escape(label) for label in sorted(LABELS, key=len, reverse=True))
LINE_RE = re.compile(
    rf"^\s*(?P<label>{_LABEL_ALTERNATION})(?:\s*[:\-]\s*|\s+)(?P<value>\S.*?)\s*$",
    re.IGNORECASE,
)

REFERENCE_RE = re.compile(r"([A-Z0-9]+)", re.IGNORECASE)
CONFIRMATION_CODE_RE = re.compile(r"([A-Z0-9]{6,})\b", re.IGNORECASE)
THOUSANDS_RE = re.compile(r"\d{1,3}(?:[.,]\d{3})+")

# Unlabeled item layout: everything after a confirmation code up to the next one.
SKU_TOKEN_RE = re.compile(r"\b(WM-[A-Z0-9-]+)", re.IGNORECASE)
SKU_INLINE_RE = re.compile(r"\bSKU\s*[:\-]?\s*([A-Z0-9-]+)", re.IGNORECASE)
PRODUCT_INLINE_RE = re.compile(
    r"\beSIM\b.*?(?=\s*(?:WM-|SKU\b|Visit Date|Quantity|Qty\b|Unit Price|IDR\b)|\s*$)",
    re.IGNORECASE | re.MULTILINE,
)
VISIT_DATE_INLINE_RE = re.compile(
    r"Visit Date\s*[:\-]?\s*(.+?)\s*(?=Quantity|Qty\b|Unit Price|IDR\b|$)",
    re.IGNORECASE | re.MULTILINE,
)
QUANTITY_INLINE_RE = re.compile(r"\b(?:Quantity|Qty)\s*[:\-]?\s*(\d+)", re.IGNORECASE)
UNIT_PRICE_INLINE_RE = re.compile(r"Unit Price\s*[:\-]?\s*IDR\s*([\d.,]+)", re.IGNORECASE)
IDR_AMOUNT_RE = re.compile(r"\bIDR\s*([\d.,]+)", re.IGNORECASE)
# Summary line: `1 (15 Days) - eSIM Australia New Zealand WM-AUNZ-15-10GB`.
SUMMARY_LINE_RE = re.compile(r"^\s*(\d+)\s*\(([^)]+)\)\s*-\s*(.+?)\s*$", re.MULTILINE)

DATE_FORMATS = (
    "%d %b %Y %H:%M:%S",
    "%d %b %Y %H:%M",
    "%d %b %Y, %H:%M",
    "%d %b %Y %I:%M %p",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%a, %d %b %Y",
    "%A, %d %B %Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
)

BLOCK_TAGS = ("p", "li", "div", "td", "th", "h1", "h2", "h3", "h4", "h5", "h6")
_NESTED_BLOCK_TAGS = ["p", "li", "div", "table", "tr", "td", "th", "ul", "ol"]


class Pair(NamedTuple):
    field: str
    value: str
    labeled: bool = True


# Field name for body lines that carry no recognizable label.
TEXT = "text"


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def match_line(line: str) -> Pair | None:
    """Return the labeled pair on a line, or None.

    `labeled` is False when only whitespace separates label and value
    (`Price list attached`), so a later `Price: 100` can replace it.
    """

    match = LINE_RE.match(_normalize(line))
    if not match:
        return None
    separator = match.string[match.end("label") : match.start("value")]
    return Pair(
        LABELS[match.group("label").lower()],
        match.group("value"),
        labeled=bool(separator.strip()),
    )


def _line_pairs(lines) -> list[Pair]:
    pairs: list[Pair] = []
    for line in lines:
        pair = match_line(line)
        if pair:
            pairs.append(pair)
        elif line.strip():
            pairs.append(Pair(TEXT, _normalize(line), labeled=False))
    return pairs


class HtmlStrategy:
    """Reads label/value pairs from table rows and leaf block elements."""

    name = "html"

    def extract(self, html: str) -> list[Pair]:
        if not html.strip():
            return []
        soup = BeautifulSoup(html, "html.parser")
        # Source line breaks are layout only; `<br>` is the real line break.
        for node in soup.find_all(string=True):
            if type(node) is NavigableString and "\n" in node:
                node.replace_with(re.sub(r"\s+", " ", str(node)))
        for br in soup.find_all("br"):
            br.replace_with("\n")

        pairs: list[Pair] = []
        for element in soup.find_all(True):
            if element.name == "tr":
                pair = self._row_pair(element)
                if pair:
                    pairs.append(pair)
            elif element.name in BLOCK_TAGS and self._is_leaf(element):
                pairs.extend(_line_pairs(element.get_text(" ").split("\n")))
        return pairs

    @staticmethod
    def _row_pair(row: Tag) -> Pair | None:
        cells = row.find_all(["td", "th"], recursive=False)
        if len(cells) < 2:
            return None
        label = _normalize(cells[0].get_text(" ")).rstrip(":").strip().lower()
        value = _normalize(cells[1].get_text(" "))
        if label in LABELS and value:
            return Pair(LABELS[label], value)
        return None

    @staticmethod
    def _is_leaf(element: Tag) -> bool:
        return element.find(_NESTED_BLOCK_TAGS) is None


class TextStrategy:
    """Line-oriented fallback for plain-text bodies."""

    name = "text"

    def extract(self, text: str) -> list[Pair]:
        return _line_pairs(text.splitlines())


def parse_date(raw: str | None) -> datetime | None:
    """Best-effort date parsing; anything unrecognized becomes None."""

    if not raw:
        return None
    value = re.sub(r"\(.*?\)", "", raw).strip().rstrip(".")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_price(raw: str | None) -> Decimal | None:
    """Parse `1,776,500`, `IDR 1.776.500` or `12.50` into a Decimal."""

    if not raw:
        return None
    cleaned = re.sub(r"[^\d.,]", "", raw).strip(".,")
    if not cleaned:
        return None
    if THOUSANDS_RE.fullmatch(cleaned):
        cleaned = re.sub(r"[.,]", "", cleaned)
    elif "," in cleaned and "." not in cleaned:
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_quantity(raw: str | None) -> int:
    match = re.match(r"\s*(\d+)", raw or "")
    if not match:
        return 1
    quantity = int(match.group(1))
    return quantity if quantity >= 1 else 1


def _search(pattern: re.Pattern, text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1).strip() if match else None


def _unlabeled_fields(text: str) -> dict[str, str]:
    """Item fields read from the vendor's unlabeled item block.

    The block is the rest of the confirmation-code line plus the unlabeled
    lines that follow it, e.g. `GTMSRLOW eSIM Australia New Zealand 15 Days
    WM-AUNZ-15-10GB Visit Date: 20 Feb 2026 Quantity: 1 IDR 1,776,500`.
    """

    fields: dict[str, str] = {}
    summary = SUMMARY_LINE_RE.search(text)
    sku = _search(SKU_TOKEN_RE, text) or _search(SKU_INLINE_RE, text)
    if sku:
        fields["sku"] = sku
    if summary:
        fields["quantity"] = summary.group(1)
        fields["product_variant"] = summary.group(2).strip()
        product = summary.group(3).replace(sku, "") if sku else summary.group(3)
        if product.strip():
            fields["product_name"] = _normalize(product)
    inline_product = PRODUCT_INLINE_RE.search(text)
    if inline_product:
        fields.setdefault("product_name", inline_product.group(0).strip())
    visit_date = _search(VISIT_DATE_INLINE_RE, text)
    if visit_date:
        fields["visit_date"] = visit_date
    quantity = _search(QUANTITY_INLINE_RE, text)
    if quantity:
        fields["quantity"] = quantity
    price = _search(UNIT_PRICE_INLINE_RE, text) or _search(IDR_AMOUNT_RE, text)
    if price:
        fields["unit_price"] = price
    return fields


def _build_item(fields: dict[str, str], text_lines: list[str]) -> ParsedItem:
    if text_lines:
        # Labeled values always win over the unlabeled block.
        fields = {**_unlabeled_fields("\n".join(text_lines)), **fields}
    return ParsedItem(
        confirmation_code=fields["confirmation_code"],
        product_name=fields.get("product_name"),
        product_variant=fields.get("product_variant"),
        sku=fields.get("sku"),
        visit_date=parse_date(fields.get("visit_date")),
        quantity=parse_quantity(fields.get("quantity")),
        unit_price=parse_price(fields.get("unit_price")),
    )


def _keep(fields: dict[str, str], labeled: set[str], pair: Pair) -> None:
    """First value wins, except that a labeled value replaces a prose match."""

    if pair.field in fields and (not pair.labeled or pair.field in labeled):
        return
    fields[pair.field] = pair.value
    if pair.labeled:
        labeled.add(pair.field)


def assemble_order(pairs: list[Pair]) -> ParsedOrder | None:
    """Fold ordered label/value pairs into an order.

    Every `confirmation_code` pair opens a new item; item fields seen before the
    first code are carried into it. Unlabeled text after a code is kept as that
    item's block and only fills fields no label supplied. Repeated codes keep
    the first occurrence. Returns None when no reference number or no item was
    found.
    """

    order_fields: dict[str, str] = {}
    order_labeled: set[str] = set()
    items: list[ParsedItem] = []
    seen: set[str] = set()
    current: dict[str, str] = {}
    current_labeled: set[str] = set()
    current_text: list[str] = []

    def flush() -> None:
        code = current.get("confirmation_code")
        if code and code not in seen:
            seen.add(code)
            items.append(_build_item(current, current_text))

    for pair in pairs:
        if pair.field in ORDER_LABELS.values():
            _keep(order_fields, order_labeled, pair)
            continue
        if pair.field == TEXT:
            if "confirmation_code" in current:
                current_text.append(pair.value)
            continue
        if pair.field == "confirmation_code":
            match = CONFIRMATION_CODE_RE.match(pair.value)
            if not match:
                continue
            code = match.group(1)
            if current.get("confirmation_code") == code:
                continue
            if "confirmation_code" in current:
                flush()
                current, current_labeled, current_text = {}, set(), []
            current["confirmation_code"] = code
            rest = pair.value[match.end() :].strip()
            if rest:
                current_text.append(rest)
            continue
        _keep(current, current_labeled, pair)
    flush()

    reference_match = REFERENCE_RE.match(order_fields.get("reference_number", ""))
    if not reference_match or not items:
        return None

    customer_email = order_fields.get("customer_email", "").lower()
    alternative_email = order_fields.get("alternative_email")
    return ParsedOrder(
        reference_number=reference_match.group(1),
        purchase_date=parse_date(order_fields.get("purchase_date")),
        reseller_name=order_fields.get("reseller_name"),
        customer_name=order_fields.get("customer_name", ""),
        customer_email=customer_email,
        alternative_email=alternative_email.lower() if alternative_email else None,
        mobile_number=order_fields.get("mobile_number"),
        payment_status=order_fields.get("payment_status"),
        remarks=order_fields.get("remarks"),
        items=items,
    )
