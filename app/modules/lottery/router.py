from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.database import get_db
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.lottery.bin_count_service import LotteryBinCountService
from app.modules.lottery.schemas import (
    BinCountStatus, BinCountUpdate, BinCountUpdateResult, BinCountValidation
)

lottery_router = APIRouter(prefix="/stores/{store_id}/lottery", tags=["Lottery Bins"])

# store_id stays a plain string so malformed IDs get the service's 400 response

@lottery_router.get("/bin-count", response_model=BinCountStatus)
def get_bin_count(
    store_id: str,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Obtener la cantidad de bins configurada y el estado actual.

    Incluye bins activos, bins con packs activos y bins vacíos.
    """
    service = LotteryBinCountService(db)
    return service.get_bin_count(store_id, tenant_id=auth_context.tenant_id)

@lottery_router.put("/bin-count", response_model=BinCountUpdateResult)
def update_bin_count(
    store_id: str,
    payload: BinCountUpdate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_owner_or_admin())
):
    """
    Actualizar la cantidad de bins de lotería de la tienda.

    - Al aumentar: reactiva bins desactivados y crea los que falten.
    - Al disminuir: desactiva los bins con mayor orden de visualización.
      Si alguno de ellos tiene packs activos, la operación se rechaza (409)
      y no se modifica nada.

    Solo usuarios con rol owner o admin pueden modificar la configuración.
    """
    service = LotteryBinCountService(db)
    return service.update_bin_count(
        store_id, payload.bin_count, auth_context.user_id, tenant_id=auth_context.tenant_id
    )

@lottery_router.get("/bin-count/validate", response_model=BinCountValidation)
def validate_bin_count_change(
    store_id: str,
    bin_count: int = Query(..., ge=0, le=settings.LOTTERY_MAX_BIN_COUNT),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Vista previa de un cambio en la cantidad de bins, sin aplicar cambios.
    """
    service = LotteryBinCountService(db)
    return service.validate_bin_count_change(store_id, bin_count, tenant_id=auth_context.tenant_id)
