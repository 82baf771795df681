"""
Dependencias de autenticación para FastAPI.
"""
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import verify_token

# Security scheme
security = HTTPBearer()

ALL_ROLES = ["owner", "admin", "manager", "cashier", "viewer"]


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthContext:
        """
        Resuelve el contexto de autenticación de la petición.

        Los tokens de contexto ya incluyen tenant_id y user_role. Los tokens de
        acceso toman la empresa del header X-Company-ID y el rol de su claim
        ``companies``.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        payload = verify_token(credentials.credentials)
        user_id = payload.get("sub")
        token_type = payload.get("type", "access")
        if user_id is None:
            raise credentials_exception

        try:
            user_uuid = UUID(str(user_id))
        except ValueError:
            raise credentials_exception

        tenant_id = None
        user_role = None

        if token_type == "context":
            tenant_id = payload.get("tenant_id")
            user_role = payload.get("user_role")
        else:
            header_tenant = getattr(request.state, "tenant_id", None) or request.headers.get("X-Company-ID")
            if header_tenant:
                tenant_id = str(header_tenant)
                companies = payload.get("companies") or {}
                user_role = companies.get(tenant_id)
                if user_role is None:
                    raise HTTPException(
                        status_code=status.HTTP_403_FORBIDDEN,
                        detail="No tienes acceso a esta empresa"
                    )

        try:
            tenant_uuid = UUID(str(tenant_id)) if tenant_id else None
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="ID de empresa inválido"
            )

        return AuthContext(user_id=user_uuid, tenant_id=tenant_uuid, user_role=user_role)

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """
        Dependencia para requerir roles específicos.
        """
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if not auth_context.tenant_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Se requiere seleccionar una empresa"
                )

            if auth_context.user_role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed_roles)}"
                )

            return auth_context
        return role_checker

    @staticmethod
    def require_owner_or_admin():
        """Dependencia para requerir rol de owner o admin."""
        return AuthDependencies.require_role(["owner", "admin"])

    @staticmethod
    def require_any_role():
        """Dependencia que requiere cualquier rol activo en una empresa."""
        return AuthDependencies.require_role(ALL_ROLES)
