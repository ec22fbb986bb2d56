from .users import User
from .catalog import Product
from .orders import Order, OrderLine, OrderStatusHistory
from .inventory import StockLedgerEntry, StockMovement, SalesHistoryPeriod, QualityAssessment
from .payments import Payment
from .deliveries import Delivery, DeliveryTrackingUpdate, DeliveryAttempt
from .documents import DocumentSequence
from .notifications import Notification

__all__ = [
    'User',
    'Product',
    'Order', 'OrderLine', 'OrderStatusHistory',
    'StockLedgerEntry', 'StockMovement', 'SalesHistoryPeriod', 'QualityAssessment',
    'Payment',
    'Delivery', 'DeliveryTrackingUpdate', 'DeliveryAttempt',
    'DocumentSequence',
    'Notification',
]
