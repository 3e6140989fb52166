from pydantic import BaseModel, Field, field_validator
from typing import Optional

# --- AREAS ---
class ReportAreaRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    location_hint: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    cleanup_instructions: Optional[str] = None
    photo_url: Optional[str] = None
    severity: Optional[str] = None
    group_id: Optional[str] = None

    @field_validator('severity')
    @classmethod
    def severity_known(cls, v):
        if v is not None and v not in ('low', 'medium', 'high'):
            raise ValueError('severity must be low, medium or high')
        return v

class UpdateAreaRequest(BaseModel):
    description: Optional[str] = None
    cleanup_instructions: Optional[str] = None
    expected_version: Optional[int] = None

# --- CLAIM WORKFLOW ---
class BeginClaimRequest(BaseModel):
    area_id: str
    group_id: Optional[str] = None

class ToggleCollaboratorRequest(BaseModel):
    user_id: str

class AfterPhotoRequest(BaseModel):
    photo_url: str = Field(min_length=1)

# --- GROUPS ---
class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None

class UpdateGroupRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None

class JoinGroupRequest(BaseModel):
    invite_code: str = Field(min_length=1)
