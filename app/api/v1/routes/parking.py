from datetime import datetime
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import request_time
from app.schemas.slot import SlotOut, SlotList, SlotDetail, WindowOut
from app.schemas.gate import GateScanIn, GateOut
from app.services import gate_service
from app.services.gate_service import GateDecision
from app.services.slot_service import list_slot_views, get_slot_view
from app.services.stats_service import collect_stats

router = APIRouter(tags=["parking"])


# -------------------------
# SLOTS (status derived per request)
# -------------------------
@router.get("/parking/slots", response_model=SlotList)
@router.get("/slots", response_model=SlotList, include_in_schema=False)
def list_slots(db: Session = Depends(get_db), now: datetime = Depends(request_time)):
    views = list_slot_views(db, now)
    return SlotList(serverTime=now, slots=[SlotOut.from_view(v) for v in views])

@router.get("/parking/slots/{slot_id}", response_model=SlotDetail)
def slot_detail(slot_id: str, db: Session = Depends(get_db), now: datetime = Depends(request_time)):
    v = get_slot_view(db, slot_id, now)
    return SlotDetail(
        **SlotOut.from_view(v).model_dump(),
        serverTime=now,
        upcoming=[WindowOut(start=b.reserved_at, end=b.expires_at) for b in v.upcoming],
    )


# -------------------------
# GATES (QR verification at entry / exit)
# -------------------------
def _gate_response(decision: GateDecision) -> JSONResponse:
    b = decision.booking
    out = GateOut(
        valid=decision.granted,
        action="open_gate" if decision.granted else "deny",
        message=decision.message,
        reason=decision.reason,
    )
    if decision.granted:
        out.bookingId = b.id
        out.slotId = b.slot_id
        out.expiresAt = b.expires_at
        out.duration = b.duration
        out.enteredAt = b.entered_at
        out.exitedAt = b.exited_at
        out.actualDurationMinutes = decision.actual_duration_minutes
    return JSONResponse(status_code=decision.status_code, content=out.model_dump(mode="json", exclude_none=True))

@router.post("/parking/entry", response_model=GateOut)
def gate_entry(body: GateScanIn, db: Session = Depends(get_db), now: datetime = Depends(request_time)):
    return _gate_response(gate_service.verify_entry(db, body.qrCode, now=now))

@router.post("/parking/exit", response_model=GateOut)
def gate_exit(body: GateScanIn, db: Session = Depends(get_db), now: datetime = Depends(request_time)):
    return _gate_response(gate_service.verify_exit(db, body.qrCode, now=now))


# -------------------------
# STATS
# -------------------------
@router.get("/stats")
def stats(db: Session = Depends(get_db), now: datetime = Depends(request_time)):
    return collect_stats(db, now)
