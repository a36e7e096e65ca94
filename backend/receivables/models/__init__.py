from .auth import User
from .customers import Customer
from .sales import Sale, DebtRecord
from .receipts import CustomerReceipt, ReceiptAllocation
from .cash import RegisterSession, MoneyBox, CashLedgerEntry

__all__ = [
    'User',
    'Customer',
    'Sale', 'DebtRecord',
    'CustomerReceipt', 'ReceiptAllocation',
    'RegisterSession', 'MoneyBox', 'CashLedgerEntry',
]
