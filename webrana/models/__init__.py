# webrana/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from webrana.models.user import RefreshToken, User  # noqa: F401
from webrana.models.plan import PlanPricing, PlanPromo, VpsImage, VpsPlan  # noqa: F401
from webrana.models.coupon import Coupon, CouponRedemption  # noqa: F401
from webrana.models.wallet import Wallet, WalletTransaction  # noqa: F401
from webrana.models.invoice import Invoice  # noqa: F401
from webrana.models.promo import DepositPromo, DepositPromoRedemption  # noqa: F401
from webrana.models.do_account import DoAccount  # noqa: F401
from webrana.models.order import (  # noqa: F401
    Order,
    OrderItem,
    ProvisioningTask,
    RenewalHistory,
    StatusHistory,
)
from webrana.models.notification import Notification  # noqa: F401
