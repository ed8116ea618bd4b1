"""
Core Package

Contains the exchange-agnostic core logic including:
- WebSocketSession: Persistent, authenticated, multiplexed WebSocket connection
- ExchangeProtocol: The per-exchange callbacks a session is built from
- CorrelationTable: Outstanding requests keyed by correlation id
- PrivateClient: Abstract base class every exchange trading client implements
- ExchangeManager: Registry building clients from configured credentials
- Schemas: Pydantic models for normalized balances and orders

Exchange modules supply frame layouts; everything about connection
lifecycle, request matching and recovery lives here.
"""
