"""
Inventory (lots, per-zone stock, reservations, operations ledger).

Models:
- Lot (traceable batch of an article, expiration derived from its dates)
- Stock (quantity per article per zone per lot)
- StockReservation (quantity held by a pending delivery)
- InventoryOperation / InventoryOperationItem (append-only ledger of stock-affecting events)
"""
