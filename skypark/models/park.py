"""
Park and slot capacity models
"""

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column, String, Integer, Boolean, Time, Date, ForeignKey, Uuid,
    UniqueConstraint, CheckConstraint
)

from skypark.models.base import BaseModel


class Park(BaseModel):
    """
    A physical park location with its operating hours and pricing
    """
    __tablename__ = "parks"

    name = Column(String(255), nullable=False)
    city = Column(String(100))
    address = Column(String(500))
    country_code = Column(String(2), nullable=False, default="KG")
    utc_offset_minutes = Column(Integer, nullable=False, default=360)
    opening_time = Column(Time, nullable=False)
    closing_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=120)
    slot_capacity = Column(Integer, nullable=False)
    adult_price = Column(Integer, nullable=False)
    child_price = Column(Integer)  # derived from the child discount when NULL
    currency = Column(String(3), nullable=False, default="KGS")
    is_active = Column(Boolean, default=True, nullable=False)

    def effective_child_price(self, discount_percent: int) -> int:
        if self.child_price is not None:
            return self.child_price
        factor = Decimal(100 - discount_percent) / Decimal(100)
        return int((Decimal(self.adult_price) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def __repr__(self):
        return f"<Park(id={self.id}, name={self.name}, capacity={self.slot_capacity})>"


class SlotCapacity(BaseModel):
    """
    Reserved guest counter for one park time slot

    Rows are created lazily on the first reservation and only ever changed
    through conditional UPDATE statements.
    """
    __tablename__ = "slot_capacities"
    __table_args__ = (
        UniqueConstraint("park_id", "visit_date", "start_time", name="uq_park_slot"),
        CheckConstraint("capacity_reserved >= 0", name="ck_slot_reserved_non_negative"),
        CheckConstraint("capacity_reserved <= capacity_total", name="ck_slot_within_capacity"),
    )

    park_id = Column(Uuid(as_uuid=True), ForeignKey("parks.id"), nullable=False, index=True)
    visit_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    capacity_total = Column(Integer, nullable=False)
    capacity_reserved = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return (
            f"<SlotCapacity(park_id={self.park_id}, date={self.visit_date}, "
            f"start={self.start_time}, reserved={self.capacity_reserved}/{self.capacity_total})>"
        )
