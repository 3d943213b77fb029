"""
Message endpoint — the extension's runtime message contract over HTTP.

POST /messages  {"type": "refresh"}                           → {"success": bool, "error"?: str}
POST /messages  {"type": "setOpenMode", "openInPopup": bool}  → {"success": bool}
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.core.errors import describe_error
from app.core.store import SYNC, StateStore, get_store
from app.workers.refresh import RefreshCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    open_in_popup: Optional[bool] = Field(default=None, alias="openInPopup")


class MessageResponse(BaseModel):
    success: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/", response_model=MessageResponse, response_model_exclude_none=True)
async def handle_message(
    message: Message,
    store: StateStore = Depends(get_store),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> MessageResponse:
    """Dispatch one runtime message. Failures are reported in the body, not as HTTP errors."""
    if message.type == "refresh":
        try:
            result = await coordinator.refresh_now()
        except Exception as exc:
            logger.error("[messages] Refresh message failed: %s", exc, exc_info=True)
            return MessageResponse(success=False, error=describe_error(exc))
        return MessageResponse(**result.to_message())

    if message.type == "setOpenMode":
        try:
            await store.set(SYNC, {"openInPopup": bool(message.open_in_popup)})
        except Exception as exc:
            logger.error("[messages] Failed to store open mode: %s", exc, exc_info=True)
            return MessageResponse(success=False, error=describe_error(exc))
        return MessageResponse(success=True)

    raise HTTPException(status_code=400, detail=f"Unknown message type '{message.type}'")
