"""
Sales Order Service

Sales order tax and fulfillment engine for the recycling back office.

Features:
- Jurisdiction-aware sales tax (Canadian GST/HST/PST/QST rule table,
  external calculator for US and other countries)
- Tax breakdown staleness tracking via an inputs fingerprint
- Inventory allocation and backorder preview
- Guarded order lifecycle (quotation through close or cancellation)
- E-signature dispatch and signature status callbacks
- Event-driven integration with other services
"""

__version__ = "1.0.0"
