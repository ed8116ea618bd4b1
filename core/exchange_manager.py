"""
Exchange Manager — Central Registry for Private Clients

This module builds one PrivateClient per exchange that has credentials
configured and manages their sessions as a group.

Architecture Pattern:
    Registry/Factory: the manager reads credentials from settings, creates
    the matching client, and hands clients out by name. Callers never
    import exchange modules directly.

Example Usage:
    manager = ExchangeManager()
    await manager.connect_all()

    binance = manager.get_client("binance")
    await binance.limit_buy("BTCUSDT", Decimal("0.001"), Decimal("50000"))

    await manager.close_all()
"""

from typing import Dict, List, Optional

from core.config import Settings, settings as default_settings
from core.exchange_interface import PrivateClient
from core.logging import get_logger


logger = get_logger(__name__)


class ExchangeManager:
    """
    Registry of private clients keyed by exchange name.

    Attributes:
        clients: Mapping of exchange name to client,
                 e.g. {"binance": BinanceClient(...), "okx": OKXClient(...)}
    """

    def __init__(self, config: Optional[Settings] = None, clients: Optional[Dict[str, PrivateClient]] = None):
        """
        Build clients for every exchange whose credentials are configured.

        Args:
            config: Settings to read credentials from (defaults to the global settings)
            clients: Pre-built clients; skips building from credentials
        """
        if clients is not None:
            self.clients: Dict[str, PrivateClient] = dict(clients)
        else:
            self.clients = self._build_clients(config or default_settings)

        logger.info(f"ExchangeManager initialized with {len(self.clients)} client(s): {', '.join(self.clients.keys())}")

    @staticmethod
    def _build_clients(config: Settings) -> Dict[str, PrivateClient]:
        # Import here to avoid circular imports
        from exchanges.binance import BinanceClient
        from exchanges.bybit import BybitClient
        from exchanges.okx import OKXClient

        clients: Dict[str, PrivateClient] = {}

        if config.has_binance_credentials:
            clients["binance"] = BinanceClient(config.binance_api_key, config.binance_private_key, config.use_testnet)
        if config.has_bybit_credentials:
            clients["bybit"] = BybitClient(config.bybit_api_key, config.bybit_api_secret, config.use_testnet)
        if config.has_okx_credentials:
            clients["okx"] = OKXClient(
                config.okx_api_key, config.okx_secret_key, config.okx_passphrase, config.use_testnet
            )

        return clients

    # ============================================
    # Client Retrieval Methods
    # ============================================

    def get_client(self, name: str) -> PrivateClient:
        """
        Get a client by exchange name (case-insensitive).

        Raises:
            ValueError: If no client is configured for the exchange
        """
        name = name.lower()

        if name not in self.clients:
            available = ", ".join(self.clients.keys()) or "none"
            logger.error(f"Exchange '{name}' not found. Available: {available}")
            raise ValueError(
                f"Exchange '{name}' is not configured. "
                f"Available exchanges: {available}"
            )

        return self.clients[name]

    def has_client(self, name: str) -> bool:
        return name.lower() in self.clients

    def list_clients(self) -> List[str]:
        return list(self.clients.keys())

    # ============================================
    # Lifecycle Management
    # ============================================

    async def connect_all(self) -> Dict[str, Optional[Exception]]:
        """
        Connect every client.

        One exchange failing does not stop the others.

        Returns:
            Dict mapping exchange name to None on success or the error raised
        """
        logger.info("Connecting all exchanges...")
        results: Dict[str, Optional[Exception]] = {}

        for name, client in self.clients.items():
            try:
                await client.connect()
                results[name] = None
                logger.info(f"✓ {name.capitalize()} connected")
            except Exception as e:
                logger.error(f"✗ Failed to connect {name}: {e}")
                results[name] = e

        return results

    async def close_all(self) -> None:
        logger.info("Closing all exchanges...")

        for name, client in self.clients.items():
            try:
                await client.close()
                logger.info(f"✓ {name.capitalize()} closed")
            except Exception as e:
                logger.error(f"✗ Error closing {name}: {e}")

    async def health_check_all(self) -> Dict[str, bool]:
        return {name: await client.health_check() for name, client in self.clients.items()}

    def __len__(self) -> int:
        return len(self.clients)

    def __repr__(self) -> str:
        return f"<ExchangeManager(clients={self.list_clients()})>"


# Global manager instance (singleton pattern)
_manager_instance: Optional[ExchangeManager] = None


def get_manager() -> ExchangeManager:
    """Return the process-wide ExchangeManager, creating it on first use."""
    global _manager_instance

    if _manager_instance is None:
        _manager_instance = ExchangeManager()

    return _manager_instance
