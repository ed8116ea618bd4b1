"""
Exchange Connectors Package

Each exchange (Binance, Bybit, OKX) has its own subfolder with:
- __init__.py: Client class implementing PrivateClient
- protocol.py: ExchangeProtocol with the exchange's login, id, error and push handling

The modular design allows adding new exchanges without modifying the session core.
"""
