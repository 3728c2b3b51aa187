"""Allocation and Benefit ledgers, their store and their journal."""
