from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    free_saves_used: int = 0
    credit_balance: int = 0
    subscription_tier: str = "free"
    subscription_expires_at: Optional[datetime] = None
