from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import require_roles, request_time
from app.models.user import User
from app.schemas.slot import SlotOut, SlotPatch
from app.seed import reset_parking
from app.services.slot_service import set_slot_active, get_slot_view

router = APIRouter(tags=["admin"])

@router.post("/admin/reset")
def reset(db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    """Delete all bookings and re-initialize the fixed slot set."""
    counts = reset_parking(db, actor_user_id=user.id)
    return {"message": "All data reset successfully", **counts}

@router.patch("/admin/slots/{slot_id}", response_model=SlotOut)
def patch_slot(
    slot_id: str,
    body: SlotPatch,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
    now: datetime = Depends(request_time),
):
    slot = set_slot_active(db, slot_id, body.isActive, actor_user_id=user.id)
    return SlotOut.from_view(get_slot_view(db, slot.id, now))
