# Import every model here so Alembic can discover them.

from paygate.models.billing import CustomerMapping, Subscription  # noqa: F401
from paygate.models.order import Order  # noqa: F401
