"""Lot stock: FIFO inventory lots, the stock move ledger and stock figures."""
