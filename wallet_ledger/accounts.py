"""
Account References

Ledger entries point at accounts by identifier only. Whether an account
exists is answered by an injected AccountLookup; the ledger never reads
account state itself.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Union
from datetime import datetime, timezone
import threading


class AccountId(str):
    """Non-empty, whitespace-trimmed account identifier"""

    def __new__(cls, value: Union[str, 'AccountId']):
        if not isinstance(value, str):
            raise TypeError(f"Account identifier must be a string, got {type(value).__name__}")
        value = value.strip()
        if not value:
            raise ValueError("Account identifier must not be empty")
        return super().__new__(cls, value)


class AccountLookup(ABC):
    """Capability for checking that account identifiers resolve"""

    @abstractmethod
    def exists(self, account_id: str) -> bool:
        """Return True if the account is known"""
        pass


class InMemoryAccountDirectory(AccountLookup):
    """Thread-safe registry of known account identifiers"""

    def __init__(self, account_ids: Optional[List[str]] = None):
        self._accounts: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        for account_id in account_ids or []:
            self.register(account_id)

    def register(self, account_id: str) -> AccountId:
        """Register an account id; registering twice is harmless"""
        account = AccountId(account_id)
        with self._lock:
            self._accounts.setdefault(account, datetime.now(timezone.utc))
        return account

    def exists(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._accounts

    def list_accounts(self) -> List[str]:
        with self._lock:
            return sorted(self._accounts)
