# Models package — import all models here so Alembic can discover them.

from keepsake.models.submission import Submission  # noqa: F401
from keepsake.models.stripe_event import StripeEvent  # noqa: F401
