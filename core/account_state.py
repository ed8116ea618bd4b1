"""
Per-Client Account State

Each private client owns one AccountState holding its balance and order
caches. The two maps are independent, so each has its own lock: a burst of
order updates never stalls a balance lookup.

Push handlers write here from the session's reader task, callers read from
their own tasks. No method awaits while holding a lock.
"""

import threading
from decimal import Decimal
from typing import Dict, List, Optional

from core.schemas import OrderResponse, OrderStatus, Wallet


class AccountState:
    """
    Balance and order caches for one client.

    Example:
        >>> state = AccountState()
        >>> state.set_balance(Wallet(asset="USDT", free=Decimal("100")))
        >>> state.get_balance("USDT").free
        Decimal('100')
    """

    def __init__(self):
        self._balances: Dict[str, Wallet] = {}
        self._orders: Dict[str, OrderResponse] = {}
        self._balances_lock = threading.Lock()
        self._orders_lock = threading.Lock()

    # ============================================
    # Balances
    # ============================================

    def set_balance(self, wallet: Wallet) -> None:
        with self._balances_lock:
            self._balances[wallet.asset] = wallet

    def replace_balances(self, wallets: List[Wallet]) -> None:
        """Swap in a full balance snapshot (e.g. after login)."""
        with self._balances_lock:
            self._balances = {w.asset: w for w in wallets}

    def get_balance(self, asset: str) -> Optional[Wallet]:
        with self._balances_lock:
            return self._balances.get(asset.upper())

    def balance_amount(self, asset: str, include_locked: bool = False) -> Decimal:
        """
        Return the cached balance of ``asset``; zero if never reported.
        """
        wallet = self.get_balance(asset)
        if wallet is None:
            return Decimal("0")
        return wallet.total if include_locked else wallet.free

    # ============================================
    # Orders
    # ============================================

    def upsert_order(self, order: OrderResponse) -> None:
        with self._orders_lock:
            self._orders[order.order_id] = order

    def get_order(self, order_id: str) -> Optional[OrderResponse]:
        with self._orders_lock:
            return self._orders.get(order_id)

    def remove_order(self, order_id: str) -> None:
        with self._orders_lock:
            self._orders.pop(order_id, None)

    def open_order_ids(self, symbol: Optional[str] = None) -> List[str]:
        """
        Snapshot the ids of open orders, optionally for one symbol.

        Callers iterate the returned list, never the live map, because push
        updates keep mutating it while cancels are in flight.
        """
        with self._orders_lock:
            return [
                order_id for order_id, order in self._orders.items()
                if order.status is OrderStatus.OPEN and (symbol is None or order.symbol == symbol)
            ]
