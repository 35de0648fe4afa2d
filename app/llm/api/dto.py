# app/llm/api/dto.py
from typing import List, Optional

from pydantic import BaseModel


class ProviderInfo(BaseModel):
    name: str
    default_model: Optional[str] = None
    status: str
    max_files: int
    max_file_size_bytes: int
    native_types: List[str]


class RateLimitInfo(BaseModel):
    remaining: int
    reset_in_s: float
    is_limited: bool


class ProviderListResponse(BaseModel):
    providers: List[ProviderInfo]
    rate_limit: Optional[RateLimitInfo] = None
