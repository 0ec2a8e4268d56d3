"""Monthly quota snapshot."""

from pydantic import BaseModel
from typing import Optional, Union
from datetime import datetime


class QuotaStatus(BaseModel):
    used: int
    limit: Union[int, str]
    remaining: int  # -1 when unlimited
    percent_used: int
    is_unlimited: bool = False
    reset_date: datetime
    tier: Optional[str] = None
