from fastapi import APIRouter, Depends

from app.core.query_metrics import query_metrics_service
from app.modules.auth.dependencies import AuthDependencies
from app.modules.monitoring.schemas import QueryMetricsOut

monitoring_router = APIRouter(prefix="/monitoring", tags=["Monitoring"])

@monitoring_router.get("/query-metrics", response_model=QueryMetricsOut)
def get_query_metrics(
    auth_context = Depends(AuthDependencies.require_owner_or_admin())
):
    """
    Métricas de consultas de la base de datos en la ventana actual:
    tiempos, consultas lentas, patrones N+1 y timeouts de transacción.
    """
    return query_metrics_service.get_metrics()
