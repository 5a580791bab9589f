from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from medclock.models.directory import Professional, Service


@dataclass(frozen=True)
class ServiceInfo:
    id: int
    duration_minutes: int | None
    price: Decimal | None


class DirectoryGateway:
    """Read-only lookups into the professional and service directories."""

    def __init__(self, db: Session):
        self.db = db

    def get_service_by_id(self, service_id: int) -> ServiceInfo | None:
        service = self.db.query(Service).filter(Service.id == service_id).first()
        if service is None:
            return None
        return ServiceInfo(id=service.id, duration_minutes=service.duration_minutes, price=service.price)

    def professional_exists(self, professional_id: int) -> bool:
        found = self.db.query(Professional.id).filter(
            Professional.id == professional_id,
            Professional.active.is_not(False),
        ).first()
        return found is not None
