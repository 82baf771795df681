from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from sqlalchemy.orm import relationship
from app.common.mixins import TenantMixin, TimestampMixin

class Store(Base, TenantMixin, TimestampMixin):
    __tablename__ = "stores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    address = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Target number of active lottery bins; NULL until first configured
    lottery_bin_count = Column(Integer, nullable=True)

    lottery_bins = relationship("LotteryBin", back_populates="store", order_by="LotteryBin.display_order")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_store_tenant_name"),
        CheckConstraint(
            "lottery_bin_count IS NULL OR (lottery_bin_count >= 0 AND lottery_bin_count <= 200)",
            name="ck_store_lottery_bin_count_range"
        ),
    )
