"""Per-line stock adjustment for jewelcart."""

import logging
from dataclasses import dataclass, field

from .document_store import DocumentStore
from .models import LineItem

logger = logging.getLogger("jewelcart.inventory")


@dataclass
class AdjustmentReport:
    """Which product IDs were adjusted and which failed."""

    adjusted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class InventoryAdjuster:
    """
    Moves quantity from ``stock`` to ``sold`` on product documents.

    Each product is adjusted in its own atomic increment; there is no
    transaction spanning the lines of an order. Stock may go negative
    (no oversell check at this layer).
    """

    def __init__(self, store: DocumentStore):
        self._products = store.products

    def adjust(self, product_id: str, quantity: int) -> bool:
        """
        Decrement stock and increment sold by ``quantity`` for one product.

        Returns False when the product does not exist.
        """
        doc = self._products.increment(product_id, {"stock": -quantity, "sold": quantity})
        if doc is None:
            logger.warning("Stock adjustment skipped: product %s not found", product_id)
            return False
        logger.debug(
            "Adjusted product %s by %d (stock=%s, sold=%s)",
            product_id,
            quantity,
            doc.get("stock"),
            doc.get("sold"),
        )
        return True

    def apply_order_lines(self, items: list[LineItem]) -> AdjustmentReport:
        """Adjust every line independently; a failing line never stops the rest."""
        report = AdjustmentReport()
        for item in items:
            try:
                ok = self.adjust(item.product_id, item.quantity)
            except Exception:
                logger.exception("Failed to deduct stock for product %s", item.product_id)
                ok = False
            if ok:
                report.adjusted.append(item.product_id)
            else:
                report.failed.append(item.product_id)
        return report
