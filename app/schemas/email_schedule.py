from pydantic import BaseModel
from datetime import datetime


class EmailScheduleResponse(BaseModel):
    id: int
    movie_id: int
    user_id: int
    scheduled_for: datetime
    sent: bool
    created_at: datetime

    class Config:
        from_attributes = True
