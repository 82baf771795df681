from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

class StoreCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Name of the store")
    address: Optional[str] = Field(None, max_length=255, description="Address of the store")
    phone_number: Optional[str] = Field(None, max_length=20, description="Phone number of the store")
    is_active: bool = Field(default=True, description="Indicates if the store is active")

class StoreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100, description="Name of the store")
    address: Optional[str] = Field(None, max_length=255, description="Address of the store")
    phone_number: Optional[str] = Field(None, max_length=20, description="Phone number of the store")
    is_active: Optional[bool] = Field(None, description="Indicates if the store is active")

class StoreOutput(BaseModel):
    id: UUID = Field(..., description="Unique identifier of the store")
    name: str = Field(..., description="Name of the store")
    address: Optional[str] = Field(None, description="Address of the store")
    phone_number: Optional[str] = Field(None, description="Phone number of the store")
    is_active: bool = Field(..., description="Indicates if the store is active")
    lottery_bin_count: Optional[int] = Field(None, description="Configured number of lottery bins")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    class Config:
        from_attributes = True

class StoreList(BaseModel):
    stores: list[StoreOutput] = Field(..., description="List of stores")
    total: int = Field(..., description="Total number of stores")
    limit: int = Field(..., description="Number of stores per page")
    offset: int = Field(..., description="Number of stores skipped")

    class Config:
        from_attributes = True
