from commrelay.core.db.crud.base import BaseDB
from commrelay.core.db.crud.delivery_record import (
    DeliveryRecordDB,
    TERMINAL_STATUSES,
    delivery_record_db,
)

__all__ = [
    # Classes (for type hints and subclassing)
    "BaseDB",
    "DeliveryRecordDB",
    "TERMINAL_STATUSES",
    # Global instances (for actual usage)
    "delivery_record_db",
]
