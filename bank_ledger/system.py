"""
Ledger System

Wires the ledger components around one storage backend. The system owns the
backend's lifecycle; nothing else holds a database handle.
"""

from datetime import datetime
from typing import Callable, Optional

from .accounts import AccountManager
from .config import LedgerConfig, get_config
from .ledger import LedgerStore
from .posting import BalanceMutator
from .reporting import DashboardAggregator
from .storage import StorageInterface, create_storage
from .validation import TransactionValidator
from .logging_config import get_logger


class LedgerSystem:
    """Bank ledger with all components initialized"""

    def __init__(self, storage: StorageInterface, growth_window_days: int = 30,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.ledger = LedgerStore(storage, clock=clock)
        self.account_manager = AccountManager(self.ledger)
        self.validator = TransactionValidator(self.ledger)
        self.mutator = BalanceMutator(self.ledger, self.validator)
        self.aggregator = DashboardAggregator(self.ledger, growth_window_days=growth_window_days)

    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None) -> 'LedgerSystem':
        """Build a system on the backend named by the configured database URL"""
        config = config or get_config()
        storage = create_storage(config.database_url, timeout=config.store_timeout_seconds)
        get_logger("bank_ledger").info(f"Ledger store opened: {type(storage).__name__}")
        return cls(storage, growth_window_days=config.growth_window_days)

    def close(self) -> None:
        self.ledger.close()

    def __enter__(self) -> 'LedgerSystem':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
