"""Customer persistence service."""
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import Customer

logger = logging.getLogger(__name__)


class CustomerPersistenceService:
    """Service for persisting customer data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_phone(self, phone: str) -> Optional[Customer]:
        """Get customer by normalized phone number."""
        result = await self.db.execute(select(Customer).where(Customer.phone == phone))
        return result.scalar_one_or_none()

    async def get_by_id(self, customer_id: int) -> Optional[Customer]:
        """Get customer by ID."""
        return await self.db.get(Customer, customer_id)

    async def find_or_create(self, phone: str) -> Customer:
        """Return the customer for this phone, creating one on first call."""
        existing = await self.get_by_phone(phone)
        if existing:
            return existing

        customer = Customer(phone=phone)
        self.db.add(customer)
        await self.db.commit()
        await self.db.refresh(customer)
        logger.info(f"[CUSTOMERS] Created customer {customer.id} for new caller")
        return customer

    async def update_name(self, customer_id: int, full_name: str) -> Optional[Customer]:
        """Update customer's full name."""
        customer = await self.get_by_id(customer_id)
        if customer:
            customer.full_name = full_name
            await self.db.commit()
            await self.db.refresh(customer)
        return customer

    async def increment_reservation_count(self, customer_id: int) -> None:
        customer = await self.get_by_id(customer_id)
        if customer:
            customer.total_reservations = (customer.total_reservations or 0) + 1
            await self.db.commit()
