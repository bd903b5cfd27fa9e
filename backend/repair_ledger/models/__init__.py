from .tenancy import Workshop, WorkshopSubscription, WorkshopApiToken
from .tickets import Ticket
from .payments import Payment, PaymentEvent
from .security import SecurityEvent

__all__ = [
    'Workshop', 'WorkshopSubscription', 'WorkshopApiToken',
    'Ticket',
    'Payment', 'PaymentEvent',
    'SecurityEvent',
]
