from pydantic import BaseModel
from datetime import datetime
from typing import Optional

class TimeStamped(BaseModel):
    created_at: datetime

class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    error_code: Optional[str] = None

class DatabaseError(ErrorResponse):
    error_code: str = "DATABASE_ERROR"

class CheckinErrorResponse(ErrorResponse):
    missing_question_ids: list[str] | None = None
