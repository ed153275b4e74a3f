from .content import Story, Chapter, PurchaseModel
from .purchases import UserPurchases, PurchaseEntry
from .ledger import CoinAccount, CoinTransaction

__all__ = [
    'Story', 'Chapter', 'PurchaseModel',
    'UserPurchases', 'PurchaseEntry',
    'CoinAccount', 'CoinTransaction',
]
