from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from app.modules.stores.models import Store
from app.modules.stores.schemas import StoreCreate, StoreUpdate
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

def _ensure_unique_name(db: Session, tenant_id: UUID, name: str, exclude_id: UUID = None):
    query = db.query(Store).filter(Store.tenant_id == tenant_id, Store.name == name)
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A store named '{name}' already exists in this company"
        )

def create_store(store: StoreCreate, db: Session, tenant_id: UUID):
    _ensure_unique_name(db, tenant_id, store.name)

    new_store = Store(**store.model_dump(), tenant_id=tenant_id)
    db.add(new_store)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A store named '{store.name}' already exists in this company"
        )
    db.refresh(new_store)
    logger.info(f"Store {new_store.id} created for tenant {tenant_id}")
    return new_store

def get_all_stores(db: Session, tenant_id: UUID, limit: int = 100, offset: int = 0):
    query = db.query(Store).filter(Store.tenant_id == tenant_id)
    total = query.count()
    stores = query.order_by(Store.name).offset(offset).limit(limit).all()
    return {"stores": stores, "total": total, "limit": limit, "offset": offset}

def get_store_by_id(store_id: UUID, db: Session, tenant_id: UUID):
    store = db.query(Store).filter(Store.id == store_id, Store.tenant_id == tenant_id).first()
    if not store:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Store not found"
        )
    return store

def update_store(store_id: UUID, store_update: StoreUpdate, db: Session, tenant_id: UUID):
    store = get_store_by_id(store_id, db, tenant_id)

    changes = store_update.model_dump(exclude_unset=True)
    if changes.get("name") and changes["name"] != store.name:
        _ensure_unique_name(db, tenant_id, changes["name"], exclude_id=store.id)

    # lottery_bin_count is owned by the bin count service
    for key, value in changes.items():
        setattr(store, key, value)

    db.commit()
    db.refresh(store)
    return store
