from .auth import User, Role, UserRole, SessionToken
from .catalog import CatalogItem
from .quotations import Quotation, QuotationLine, TERMINAL_QUOTATION_STATUSES
from .orders import SalesOrder, SalesOrderLine, PaymentProof, OrderTimelineEvent, OPEN_ORDER_STATUSES
from .security import SecurityEvent, StepUpChallenge
from .documents import DocumentSequence, AuditEvent

__all__ = [
    'User', 'Role', 'UserRole', 'SessionToken',
    'CatalogItem',
    'Quotation', 'QuotationLine', 'TERMINAL_QUOTATION_STATUSES',
    'SalesOrder', 'SalesOrderLine', 'PaymentProof', 'OrderTimelineEvent', 'OPEN_ORDER_STATUSES',
    'SecurityEvent', 'StepUpChallenge',
    'DocumentSequence', 'AuditEvent',
]
