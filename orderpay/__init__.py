"""
orderpay - order/payment reconciliation core.

Subpackages:
- orders: pricing, order numbering, lifecycle state machine, order service
- payments: gateway signing/XML codec, gateway client, callback reconciliation
- services: persistence (Supabase repositories), ledgers, failure alerts
- routers: thin FastAPI surface (callbacks, cron polling)
"""

__version__ = "0.1.0"
