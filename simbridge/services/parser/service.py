"""Vendor email parser.

`EmailParser.parse` is pure: no I/O, no clock, no database. Strategies are
tried in a fixed order (HTML first, then plain text) and the first one that
yields both a reference number and at least one line item wins.
"""

from simbridge.common.logging import logger
from simbridge.services.parser.schemas import ParsedOrder, RawEmail
from simbridge.services.parser.strategies import HtmlStrategy, TextStrategy, assemble_order


class EmailParser:
    """Turns one vendor purchase-confirmation email into a `ParsedOrder`."""

    def __init__(
        self,
        sender_pattern: str = "globaltix.com",
        subject_keyword: str = "ticket",
        strategies=None,
    ) -> None:
        self.sender_pattern = sender_pattern.lower()
        self.subject_keyword = subject_keyword.lower()
        self.strategies = strategies or [HtmlStrategy(), TextStrategy()]

    def is_vendor_email(self, email: RawEmail) -> bool:
        if self.sender_pattern and self.sender_pattern not in email.sender.lower():
            return False
        return self.subject_keyword in email.subject.lower()

    def parse(self, email: RawEmail) -> ParsedOrder | None:
        """Return the parsed order, or None when the email is not applicable."""

        if not email.text.strip() and not email.html.strip():
            logger.warning("parser skipped email: empty body subject=%r", email.subject)
            return None
        if not self.is_vendor_email(email):
            logger.info("parser skipped email: not a vendor message sender=%r subject=%r", email.sender, email.subject)
            return None

        for strategy in self.strategies:
            body = email.html if strategy.name == "html" else email.text
            if not body:
                continue
            order = assemble_order(strategy.extract(body))
            if order is not None:
                logger.info(
                    "parsed order reference=%s items=%s strategy=%s",
                    order.reference_number,
                    len(order.items),
                    strategy.name,
                )
                return order

        logger.warning("parser skipped email: no reference number or line items subject=%r", email.subject)
        return None


def format_order_summary(order: ParsedOrder) -> str:
    """Short human-readable summary: a header line plus one line per item."""

    lines = [
        f"{order.reference_number} customer={order.customer_name or '-'} "
        f"<{order.customer_email or '-'}> items={len(order.items)}"
    ]
    for item in order.items:
        price = item.unit_price if item.unit_price is not None else "-"
        lines.append(
            f"  {item.confirmation_code} sku={item.sku or '-'} qty={item.quantity} "
            f"price={price} product={item.product_name or '-'}"
        )
    return "\n".join(lines)
