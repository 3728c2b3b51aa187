"""HTTP call surface for the pension ledgers."""
