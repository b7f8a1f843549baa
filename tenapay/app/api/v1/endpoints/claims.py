"""
Claim API endpoints.

Health claim payouts from the caller's wallet, and the caller's ledger.
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tenapay.app.db.session import get_db
from tenapay.app.core.dependencies import get_current_user, get_payout_initiator
from tenapay.app.schemas.claim import ClaimRequest, ClaimResponse, ClaimPayoutData, TransactionResponse
from tenapay.app.services.payouts import PayoutInitiator
from tenapay.app.services.transactions import list_transactions

router = APIRouter(prefix="/claims", tags=["Claims"])


@router.post("/request", response_model=ClaimResponse)
async def request_claim(
    claim: ClaimRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    initiator: PayoutInitiator = Depends(get_payout_initiator)
):
    """
    Pay a claim out of the caller's wallet to a Telebirr phone.

    400 on insufficient funds, 422 on a bad amount or phone, 503 when the
    transfer failed and the debit was reversed (or queued for reversal).
    """
    result = await initiator.request_claim(
        db, current_user["user_id"], claim.amount, claim.phone
    )
    return ClaimResponse(
        success=True,
        message="Claim payout initiated successfully",
        data=ClaimPayoutData(
            transaction=TransactionResponse.model_validate(result.transaction),
            confirmation=result.confirmation,
            new_balance=result.new_balance,
        )
    )


@router.get("/history", response_model=List[TransactionResponse])
async def claim_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The caller's transactions, newest first."""
    return await list_transactions(db, current_user["user_id"], limit=limit, offset=offset)
