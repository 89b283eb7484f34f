from typing import List

from pydantic import BaseModel, field_validator


class PositionPermissionsUpdate(BaseModel):
    permissions: List[str]

    @field_validator("permissions")
    @classmethod
    def strip_blank(cls, v):
        return [p.strip() for p in v if p and p.strip()]
