"""
Orderflow Modules -- entity DTOs and ORM models per business area.

- procurement: purchase orders, purchase-order lines, receipts
- sales: estimates, sales orders, sales-order lines, invoices
- inventory: per-product on-hand stock
"""
