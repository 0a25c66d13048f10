"""
Drivers module: the delivery agents whose receivables the ledger tracks.
"""
