"""
                        Services Module

Business logic of the token market.

Services:
    - pricing: token price formula and market signals
    - ledger: lookups and aggregates over the ledger tables
    - tokens: token creation, mint, burn, re-pricing
    - subscriptions: investor buys and sells
    - notifications: WebSocket event publishing
"""
