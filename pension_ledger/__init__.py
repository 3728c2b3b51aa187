"""Pension fund ledgers: asset allocation and benefit payments."""

__version__ = "0.1.0"
