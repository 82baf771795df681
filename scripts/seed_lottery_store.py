"""
Seed script: create a demo store with configured lottery bins.

What it creates:
- Store (in the given tenant, or a new random tenant).
- Lottery bins through the bin count service (same path as the API).
- ACTIVE packs in some of the bins so the shrink protection can be tried out.

Run from the project root with the database settings in .env:
    python scripts/seed_lottery_store.py \
        --store-name "Demo Gas & Go" --bins 24 --packed 6

Note: This is intended for development environments only.
"""

# Add project root to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
import logging
from uuid import UUID, uuid4

from app.database.database import SessionLocal, Base, sync_engine
from app.modules.stores.models import Store
from app.modules.lottery.models import LotteryBin, LotteryPack, PackStatus
from app.modules.lottery.bin_count_service import LotteryBinCountService

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("seed_lottery_store")

GAME_CODES = ["101", "205", "310", "450", "520", "777"]


def get_or_create_store(db, tenant_id: UUID, name: str) -> Store:
    store = db.query(Store).filter(Store.tenant_id == tenant_id, Store.name == name).first()
    if store:
        logger.info(f"Using existing store {store.id} ({name})")
        return store
    store = Store(tenant_id=tenant_id, name=name, address="100 Demo Ave")
    db.add(store)
    db.commit()
    db.refresh(store)
    logger.info(f"Created store {store.id} ({name})")
    return store


def create_active_packs(db, store: Store, packed: int) -> int:
    bins = db.query(LotteryBin).filter(
        LotteryBin.store_id == store.id,
        LotteryBin.is_active.is_(True),
        ~LotteryBin.packs.any(LotteryPack.status == PackStatus.ACTIVE)
    ).order_by(LotteryBin.display_order).all()

    chosen = random.sample(bins, min(packed, len(bins)))
    for lottery_bin in chosen:
        db.add(LotteryPack(
            tenant_id=store.tenant_id,
            store_id=store.id,
            bin_id=lottery_bin.id,
            game_code=random.choice(GAME_CODES),
            pack_number=f"{random.randint(0, 9_999_999):07d}",
            status=PackStatus.ACTIVE
        ))
    db.commit()
    return len(chosen)


def main():
    parser = argparse.ArgumentParser(description="Seed a demo store with lottery bins")
    parser.add_argument("--tenant-id", type=UUID, default=None, help="Company (tenant) ID; random if omitted")
    parser.add_argument("--user-id", type=UUID, default=None, help="Acting user ID; random if omitted")
    parser.add_argument("--store-name", default="Demo Store")
    parser.add_argument("--bins", type=int, default=20, help="Target bin count (0-200)")
    parser.add_argument("--packed", type=int, default=5, help="Bins that receive an ACTIVE pack")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--create-tables", action="store_true", help="Run create_all before seeding")
    args = parser.parse_args()

    random.seed(args.seed)
    if args.create_tables:
        Base.metadata.create_all(bind=sync_engine)

    tenant_id = args.tenant_id or uuid4()
    user_id = args.user_id or uuid4()

    db = SessionLocal()
    try:
        store = get_or_create_store(db, tenant_id, args.store_name)
        result = LotteryBinCountService(db).update_bin_count(store.id, args.bins, user_id)
        logger.info(
            f"Bins: {result.previous_count} -> {result.new_count} "
            f"(created={result.bins_created}, reactivated={result.bins_reactivated}, "
            f"deactivated={result.bins_deactivated})"
        )
        packs = create_active_packs(db, store, args.packed)
        logger.info(f"Assigned {packs} active pack(s)")
        logger.info(f"Done. tenant_id={tenant_id} store_id={store.id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
