"""
Receivables module

Driver-level daily receivable records, customer-level receivables and
the engines that keep the two consistent:

- calculator.py: daily record computation and carry-forward
- recalculation.py: full chain repair per driver / tenant
- ledger.py: customer receivables, payments and cylinder returns
- reconciliation.py: driver totals vs. outstanding customer receivables
- onboarding.py: opening balances for drivers joining the system
- queries.py: typed query builders shared by the services
"""
