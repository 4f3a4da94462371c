"""Read-only queries over the ledger."""

from certify_kernel.selectors.history_selector import HistoryProjector
from certify_kernel.selectors.inventory_selector import InventorySelector
from certify_kernel.selectors.verification_selector import VerificationSelector

__all__ = ["HistoryProjector", "InventorySelector", "VerificationSelector"]
