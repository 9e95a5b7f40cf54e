from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class TokenData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sub: str
    is_admin: bool = Field(False, alias="isAdmin")
    iss: Optional[str] = None
    aud: Optional[str] = None
    exp: Optional[int] = None
