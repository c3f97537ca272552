"""Database models — re-exports all models.

Import from here:  from app.models import QuoteRequest, Order, ...
Or from submodules: from app.models.quotes import QuoteRequest
"""

from .base import Base  # noqa: F401

# Auth & Organizations
from .auth import Organization, User  # noqa: F401

# Suppliers
from .suppliers import Supplier  # noqa: F401

# Quote requests & per-supplier threads
from .quotes import QuoteRequest, QuoteRequestItem, SupplierThread  # noqa: F401

# Email ledger
from .messages import EmailAttachment, EmailMessage, EmailThread  # noqa: F401

# Orders
from .orders import Order, OrderItem  # noqa: F401

# Assistant chat
from .conversations import ChatConversation, ChatMessage  # noqa: F401

# Audit & background work
from .activity import ActivityLog  # noqa: F401
from .tasks import BackgroundTaskRun  # noqa: F401

# Status vocabularies
from .enums import (  # noqa: F401
    FulfillmentMethod,
    ItemAvailability,
    MessageDirection,
    MessageRole,
    OrderStatus,
    QuoteStatus,
    TaskOutcome,
    ThreadStatus,
)
