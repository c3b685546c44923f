from .org import Department, User, SessionToken, Vendor
from .budgets import Budget
from .requests import PurchaseRequest, RequestItem, ApprovalHistory
from .orders import PurchaseOrder, PurchaseOrderItem
from .documents import DocumentSequence, ActivityLog, SystemSetting

__all__ = [
    'Department', 'User', 'SessionToken', 'Vendor',
    'Budget',
    'PurchaseRequest', 'RequestItem', 'ApprovalHistory',
    'PurchaseOrder', 'PurchaseOrderItem',
    'DocumentSequence', 'ActivityLog', 'SystemSetting',
]
