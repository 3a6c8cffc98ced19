from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.db.session import get_db
from app.core.security import get_current_user
from app.repositories.checkin_repo import SqlCheckInRepository
from app.services.ai import build_question_generator
from app.services.checkin import CheckInService
from app.services.checkin_engine import CheckInEngine

def Authed(user=Depends(get_current_user)):
    return {"user_id": user["user_id"]}

def get_checkin_service(db: AsyncSession = Depends(get_db)) -> CheckInService:
    engine = CheckInEngine(SqlCheckInRepository(db), build_question_generator())
    return CheckInService(engine)
