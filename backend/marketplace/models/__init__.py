"""SQLAlchemy models for the marketplace.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from marketplace.models.app_setting import AppSetting
from marketplace.models.blocked_date import BlockedDate
from marketplace.models.booking import Booking
from marketplace.models.credit_purchase import CreditPurchase
from marketplace.models.device_token import DeviceToken
from marketplace.models.listing import Listing
from marketplace.models.notification import Notification
from marketplace.models.payment import Payment
from marketplace.models.subscription import Subscription
from marketplace.models.user import User

__all__ = [
    "AppSetting",
    "BlockedDate",
    "Booking",
    "CreditPurchase",
    "DeviceToken",
    "Listing",
    "Notification",
    "Payment",
    "Subscription",
    "User",
]
