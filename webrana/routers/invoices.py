from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.db import get_db
from webrana.core.deps import get_current_user, require_admin
from webrana.models.user import User
from webrana.schemas.invoices import DepositIn, InvoiceListOut, InvoiceOut, PaymentChannelOut
from webrana.services import invoices as invoice_service

router = APIRouter(tags=["Invoices"])


@router.get("/payment-channels", response_model=list[PaymentChannelOut])
async def payment_channels(current_user: User = Depends(get_current_user)):
    return await invoice_service.list_payment_channels()


@router.post("/invoices/deposit", response_model=InvoiceOut, status_code=201)
async def create_deposit(
    body: DepositIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await invoice_service.create_deposit(
        db,
        current_user,
        amount=body.amount,
        payment_method=body.payment_method,
        return_url=body.return_url,
        promo_code=body.promo_code,
    )


@router.get("/invoices", response_model=InvoiceListOut)
async def my_invoices(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await invoice_service.list_invoices(db, user_id=current_user.id, status=status, page=page, limit=limit)


@router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await invoice_service.get_invoice(db, invoice_id, current_user)


@router.get("/admin/invoices", response_model=InvoiceListOut, tags=["Admin - Invoices"])
async def admin_list_invoices(
    user_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await invoice_service.list_invoices(db, user_id=user_id, status=status, page=page, limit=limit)
