# Import every model so Base.metadata is complete (Alembic, tests).
from app.models.user import User  # noqa: F401
from app.models.event import Event  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.payment_receipt import PaymentReceipt  # noqa: F401
from app.models.ticket import Ticket  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
