# Models package: import all models here so Alembic can discover them.

from noxpay.models.user import User  # noqa: F401
from noxpay.models.plan import SubscriptionPlan  # noqa: F401
from noxpay.models.subscription import Subscription  # noqa: F401
from noxpay.models.payment import Payment  # noqa: F401
from noxpay.models.invoice import Invoice  # noqa: F401
from noxpay.models.audit import AuditEvent  # noqa: F401
