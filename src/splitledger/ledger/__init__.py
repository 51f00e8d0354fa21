"""Balance-settlement ledger: balance store, expense lifecycle, settlements."""
