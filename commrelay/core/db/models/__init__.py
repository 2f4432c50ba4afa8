from commrelay.core.db.models.delivery_record import DeliveryRecord

__all__ = ["DeliveryRecord"]
