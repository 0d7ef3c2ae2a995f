"""
Feature modules for the credit meter backend.

- ledger: account balances and the append-only transaction log
- dedup: result caches keyed by operation fingerprint
- payments: exactly-once crediting of external payments
- metering: the usage meter tying the three together

Each module keeps interfaces.py, models.py, exceptions.py, service.py
(in-memory) and repository.py (Supabase), plus routes.py where it has an
HTTP surface. Modules depend on each other's interfaces only.
"""
