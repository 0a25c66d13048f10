"""
Sales module: driver sales and the daily aggregation that feeds the
receivables ledger.
"""
