"""
Ledger system wiring and request dependencies
"""

from typing import Optional

from fastapi import Request

from ..accounts import InMemoryAccountDirectory
from ..audit import AuditTrail
from ..config import LedgerConfig, get_config
from ..storage import StorageInterface, create_storage
from ..transactions import LedgerStore


class LedgerSystem:
    """Ledger components built from one configuration and one storage backend"""
    
    def __init__(self, config: Optional[LedgerConfig] = None, storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.account_directory = InMemoryAccountDirectory()
        self.audit_trail = AuditTrail(self.storage, self.config.audit_table)
        self.ledger = LedgerStore(
            self.storage,
            accounts=self.account_directory,
            audit_trail=self.audit_trail,
            config=self.config
        )
    
    def close(self) -> None:
        self.ledger.close()
        self.storage.close()


def get_ledger_system(request: Request) -> LedgerSystem:
    """The system instance attached to the running application"""
    return request.app.state.ledger_system
