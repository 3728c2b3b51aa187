"""Authorization for ledger mutations."""
