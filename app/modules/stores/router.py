from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from uuid import UUID

from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.stores import service
from app.modules.stores.schemas import StoreCreate, StoreUpdate, StoreOutput, StoreList

store_router = APIRouter(prefix="/stores", tags=["Stores"])

@store_router.post("/", response_model=StoreOutput, status_code=status.HTTP_201_CREATED)
def create_store(
    store: StoreCreate,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_owner_or_admin())
):
    """
    Crear nueva tienda.

    Solo usuarios con rol owner o admin pueden crear tiendas.
    """
    return service.create_store(store, db, auth_context.tenant_id)

@store_router.get("/", response_model=StoreList)
def get_all_stores(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_any_role())
):
    """
    Obtener lista de tiendas de la empresa.
    """
    return service.get_all_stores(db, auth_context.tenant_id, limit, offset)

@store_router.get("/{store_id}", response_model=StoreOutput)
def get_store_by_id(
    store_id: UUID,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_any_role())
):
    return service.get_store_by_id(store_id, db, auth_context.tenant_id)

@store_router.patch("/{store_id}", response_model=StoreOutput)
def update_store(
    store_id: UUID,
    store_update: StoreUpdate,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_owner_or_admin())
):
    """
    Actualizar tienda existente.

    Campos que se pueden actualizar:
    - name: Nombre de la tienda
    - address: Dirección
    - phone_number: Teléfono
    - is_active: Estado activo/inactivo

    La cantidad de bins de lotería se configura en /stores/{store_id}/lottery/bin-count.
    """
    return service.update_store(store_id, store_update, db, auth_context.tenant_id)
