from fastapi import APIRouter, Depends, Query
from typing import Literal, Optional
from uuid import UUID
from app.api.deps import Authed, get_checkin_service
from app.domain.checkin import CheckInState
from app.schemas.checkin import (
    AnswerOutcomeOut,
    AnswerSubmit,
    CheckinList,
    CheckinOut,
    CheckinStart,
    CheckinStartOut,
    CompleteOut,
    RecommendationList,
    SummaryOut,
)
from app.services.checkin import CheckInService

router = APIRouter(prefix="/api/checkins", tags=["checkins"])

@router.post("", response_model=CheckinStartOut)
async def start(
    payload: Optional[CheckinStart] = None,
    ctx=Depends(Authed),
    svc: CheckInService = Depends(get_checkin_service),
):
    category_id = payload.category_id if payload else None
    return await svc.start(ctx["user_id"], category_id)

@router.get("", response_model=CheckinList)
async def list_checkins(
    state: Optional[CheckInState] = None,
    limit: int = Query(20, ge=1, le=100),
    ctx=Depends(Authed),
    svc: CheckInService = Depends(get_checkin_service),
):
    return await svc.list_checkins(ctx["user_id"], state=state, limit=limit)

# declared before /{checkin_id} so "summary" is not parsed as an id
@router.get("/summary", response_model=SummaryOut)
async def summary(
    period: Literal["week", "month", "year"] = "week",
    ctx=Depends(Authed),
    svc: CheckInService = Depends(get_checkin_service),
):
    return await svc.summary(ctx["user_id"], period)

@router.get("/{checkin_id}", response_model=CheckinOut)
async def get_checkin(checkin_id: UUID, ctx=Depends(Authed), svc: CheckInService = Depends(get_checkin_service)):
    return await svc.get(ctx["user_id"], checkin_id)

@router.post("/{checkin_id}/answers", response_model=AnswerOutcomeOut)
async def answer(
    checkin_id: UUID,
    payload: AnswerSubmit,
    ctx=Depends(Authed),
    svc: CheckInService = Depends(get_checkin_service),
):
    return await svc.answer(
        ctx["user_id"],
        checkin_id,
        question_id=payload.question_id,
        value=payload.value,
        explanation=payload.explanation,
        version=payload.version,
    )

@router.post("/{checkin_id}/complete", response_model=CompleteOut)
async def complete(checkin_id: UUID, ctx=Depends(Authed), svc: CheckInService = Depends(get_checkin_service)):
    return await svc.complete(ctx["user_id"], checkin_id)

@router.post("/{checkin_id}/abort")
async def abort(checkin_id: UUID, ctx=Depends(Authed), svc: CheckInService = Depends(get_checkin_service)):
    return await svc.abort(ctx["user_id"], checkin_id)

@router.get("/{checkin_id}/recommendations", response_model=RecommendationList)
async def recommendations(checkin_id: UUID, ctx=Depends(Authed), svc: CheckInService = Depends(get_checkin_service)):
    return await svc.recommendations(ctx["user_id"], checkin_id)
