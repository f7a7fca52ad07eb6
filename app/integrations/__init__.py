"""
Integrations Package

External service integrations:
- Market data (socket.io price feed, latest-tick cache)
- Trade backend (REST ledger of positions and balances)
"""
