from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint, Index, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from uuid import uuid4
import enum
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin


class PackStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    RETURNED = "RETURNED"


def bin_name(display_order: int) -> str:
    """Bins are shown 1-indexed: display_order 0 is "Bin 1"."""
    return f"Bin {display_order + 1}"


class LotteryBin(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    """
    Physical slot holding lottery ticket packs in a store.

    display_order is 0-indexed and never reused or renumbered; deactivating a
    bin only flips is_active so a later increase restores the same row.
    """
    __tablename__ = "lottery_bins"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    location = Column(String(255), nullable=True)
    display_order = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    store = relationship("Store", back_populates="lottery_bins")
    packs = relationship("LotteryPack", back_populates="bin")

    __table_args__ = (
        UniqueConstraint("store_id", "display_order", name="uq_lottery_bin_store_display_order"),
        Index("idx_lottery_bins_store_active", "store_id", "is_active"),
    )


class LotteryPack(Base, TenantMixin, TimestampMixin):
    """Inventory unit of tickets; only ACTIVE packs pin their bin."""
    __tablename__ = "lottery_packs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    store_id = Column(UUID(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    bin_id = Column(UUID(as_uuid=True), ForeignKey("lottery_bins.id"), nullable=True, index=True)
    game_code = Column(String(10), nullable=False)
    pack_number = Column(String(30), nullable=False)
    status = Column(SQLEnum(PackStatus, name="lottery_pack_status"), default=PackStatus.RECEIVED, nullable=False)

    bin = relationship("LotteryBin", back_populates="packs")

    __table_args__ = (
        UniqueConstraint("store_id", "game_code", "pack_number", name="uq_lottery_pack_store_game_number"),
    )
