from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID


class AuthContext(BaseModel):
    """Identity resolved from a bearer token for the current request."""
    user_id: UUID = Field(..., description="Authenticated user ID")
    tenant_id: Optional[UUID] = Field(None, description="Company selected for this request")
    user_role: Optional[str] = Field(None, description="Role of the user in the selected company")
