from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.schemas.invoices import CallbackAck
from webrana.services import invoices as invoice_service

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/tripay", response_model=CallbackAck)
async def tripay_callback(
    request: Request,
    x_callback_signature: Optional[str] = Header(default=None, alias="X-Callback-Signature"),
    db: AsyncSession = Depends(get_db),
):
    # signature covers the exact bytes sent
    raw_body = await request.body()
    return await invoice_service.handle_callback(db, raw_body, x_callback_signature)
