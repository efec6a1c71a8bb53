"""
Procurement Modules.

Thin orchestration layers over the kernel and the pure engines.  Each
module contains domain models (the nouns), ORM persistence, configuration
and one service that owns the transaction boundary.

Modules:
- Procurement: requisitions, quote options, purchase orders
- Payments: payments against purchase orders and their liquidation
- Inventory: two-pool stock ledger, assignments, reversible movements
- Incremental: freight / duty / insurance distributed over base orders
"""
