from .chain_watcher import ChainWatcherClient, ManualSettlement, StaticAddressProvider
from .commission import CommissionService
from .deposits import DepositService
from .ledger import LedgerService
from .notifications import HttpNotifier, LogNotifier, NotificationService
from .repository import LedgerRepository
from .verification import VerificationService
from .withdrawals import WithdrawalService

__all__ = [
    "ChainWatcherClient",
    "CommissionService",
    "DepositService",
    "HttpNotifier",
    "LedgerRepository",
    "LedgerService",
    "LogNotifier",
    "ManualSettlement",
    "NotificationService",
    "StaticAddressProvider",
    "VerificationService",
    "WithdrawalService",
]
