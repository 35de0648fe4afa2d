from typing import Optional

from pydantic import BaseModel


class BaseResponse(BaseModel):
    status: bool
    message: str
    data: Optional[dict] = None
