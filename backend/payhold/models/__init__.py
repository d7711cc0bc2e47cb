from payhold.models.user import User
from payhold.models.order import Order, PaymentHoldStatus, ShipmentStatus, PayoutExecutionStatus
from payhold.models.escrow_transition import EscrowTransition
from payhold.models.notification import Notification
from payhold.models.job_run import JobRun
from payhold.models.webhook_event import WebhookEvent
from payhold.models.platform_event import PlatformEvent
from payhold.models.integration_settings import IntegrationSettings

__all__ = [
    "User",
    "Order",
    "PaymentHoldStatus",
    "ShipmentStatus",
    "PayoutExecutionStatus",
    "EscrowTransition",
    "Notification",
    "JobRun",
    "WebhookEvent",
    "PlatformEvent",
    "IntegrationSettings",
]
