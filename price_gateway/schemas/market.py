from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class MarketSessionConfig(BaseModel):
    open_time: str = "09:30"
    close_time: str = "16:00"
    timezone: str = "America/New_York"
    weekend_trading: bool = False


class MarketStatus(BaseModel):
    is_open: bool
    open_time: datetime
    close_time: datetime
    next_open: datetime
    next_close: datetime
    time_to_next: str
    status: Literal["open", "closed", "pre_market", "after_hours"]
