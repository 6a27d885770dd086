"""Log sink for client-side pipeline progress lines.

Clients mirror their ``[UPLOAD]`` progress messages here so they show
up in the server log next to the API's own lines.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from receipt_capture.models.schemas import LogMessage

router = APIRouter(tags=["logs"])
logger = logging.getLogger("receipt_capture.client")


@router.post("/log")
async def log_message(payload: LogMessage) -> dict:
    logger.info("[client] %s", payload.message)
    return {"ok": True}
