from pydantic import BaseModel, Field, StrictFloat, StrictInt
from typing import Optional, Union
from uuid import UUID


class BinCountStatus(BaseModel):
    store_id: UUID = Field(..., description="Store ID")
    bin_count: Optional[int] = Field(None, description="Configured bin count (null if never configured)")
    active_bins: int = Field(..., description="Number of active bins")
    bins_with_packs: int = Field(..., description="Active bins holding at least one active pack")
    empty_bins: int = Field(..., description="Active bins without active packs")


class BinCountUpdate(BaseModel):
    # Range and integrality are enforced by the service so the error kind stays consistent
    bin_count: Union[StrictInt, StrictFloat] = Field(..., description="Desired number of active bins (0-200)")


class BinCountUpdateResult(BaseModel):
    previous_count: Optional[int] = Field(None, description="Configured bin count before the update (null if never configured)")
    new_count: int = Field(..., description="Bin count after the update")
    bins_created: int = Field(0, description="Bins created")
    bins_reactivated: int = Field(0, description="Previously deactivated bins restored")
    bins_deactivated: int = Field(0, description="Bins soft-deleted")
    bins_with_packs_count: int = Field(0, description="Bins skipped because they hold active packs")


class BinCountValidation(BaseModel):
    allowed: bool = Field(..., description="Whether the change can be applied")
    current_count: int = Field(..., description="Current number of active bins")
    bins_to_add: int = Field(0, description="Bins that would be added")
    bins_to_remove: int = Field(0, description="Bins that would be removed")
    bins_with_packs_blocking: int = Field(0, description="Bins with active packs in the removal range")
    message: str = Field(..., description="Human-readable summary")
