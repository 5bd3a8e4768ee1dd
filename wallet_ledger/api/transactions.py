"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import Response

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import CreateTransactionRequest, TransferRequest, UpdateStatusRequest
from ..errors import (
    LedgerError, ValidationError, NotFoundError, ConflictError,
    StorageError, StorageTimeoutError,
)
from ..models import TransactionType
from ..transactions import Pagination
from ..validation import check_amount


router = APIRouter()

TRANSFER_ID_ATTEMPTS = 5


def _http_error(error: LedgerError) -> HTTPException:
    """Map a ledger error kind onto an HTTP status"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.to_dict())
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, StorageTimeoutError):
        return HTTPException(status_code=504, detail=str(error))
    if isinstance(error, StorageError):
        return HTTPException(status_code=503, detail="Storage unavailable")
    return HTTPException(status_code=400, detail=str(error))


def _is_duplicate_id(error: LedgerError) -> bool:
    if isinstance(error, ConflictError):
        return True
    return isinstance(error, ValidationError) and error.reason == "duplicate transactionId"


@router.post("", status_code=201)
def create_transaction(
    request: CreateTransactionRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a ledger entry"""
    try:
        record = system.ledger.create(
            from_account_id=request.from_account_id,
            to_account_id=request.to_account_id,
            amount=request.amount,
            transaction_type=request.transaction_type,
            transaction_id=request.transaction_id,
            note=request.note,
            description=request.description,
            fee=request.fee
        )
    except LedgerError as e:
        raise _http_error(e)
    
    return {"transaction": record.to_api_dict(), "message": "Transaction recorded"}


@router.post("/transfer", status_code=201)
def transfer(
    request: TransferRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a transfer, generating its transactionId and fee"""
    amount = check_amount(request.amount)
    fee = system.ledger.calculate_fee(amount.value) if amount else None
    for attempt in range(1, TRANSFER_ID_ATTEMPTS + 1):
        try:
            record = system.ledger.create(
                from_account_id=request.from_account_id,
                to_account_id=request.to_account_id,
                amount=request.amount,
                transaction_type=TransactionType.SENT,
                transaction_id=system.ledger.generate_transaction_id(),
                note=request.note,
                description=request.description,
                fee=fee
            )
            break
        except LedgerError as e:
            # A generated id collided with a stored one; draw another
            if _is_duplicate_id(e) and attempt < TRANSFER_ID_ATTEMPTS:
                continue
            raise _http_error(e)
    
    return {
        "transaction": record.to_api_dict(),
        "totalDebit": str(record.total_debit),
        "message": "Transfer recorded"
    }


@router.get("")
def get_history(
    account_id: str,
    direction: str = "any",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status: Optional[str] = None,
    transaction_type: Optional[str] = Query(None, alias="type"),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Paginated history for an account, newest first"""
    try:
        result = system.ledger.history(
            account_id,
            pagination=Pagination(page=page, limit=limit),
            status=status,
            transaction_type=transaction_type,
            direction=direction
        )
    except LedgerError as e:
        raise _http_error(e)
    
    return result.to_dict()


@router.get("/export")
def export_transactions(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Download an account's entries as CSV"""
    try:
        content = system.ledger.export_csv(account_id)
    except LedgerError as e:
        raise _http_error(e)
    
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"}
    )


@router.get("/status/{status}")
def get_by_status(
    status: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """All entries in a status"""
    try:
        records = system.ledger.find_by_status(status)
    except LedgerError as e:
        raise _http_error(e)
    
    return {"transactions": [record.to_api_dict() for record in records]}


@router.get("/id/{record_id}")
def get_transaction_by_id(
    record_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Look up an entry by its internal id"""
    try:
        record = system.ledger.get_by_id(record_id)
    except LedgerError as e:
        raise _http_error(e)

    return {"transaction": record.to_api_dict()}


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Look up an entry by transactionId (case-insensitive)"""
    try:
        record = system.ledger.get_by_transaction_id(transaction_id)
    except LedgerError as e:
        raise _http_error(e)
    
    return {"transaction": record.to_api_dict()}


@router.patch("/{transaction_id}/status")
def update_status(
    transaction_id: str,
    request: UpdateStatusRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Advance an entry's status"""
    try:
        record = system.ledger.update_status(
            transaction_id, request.status, description=request.description
        )
    except LedgerError as e:
        raise _http_error(e)
    
    return {"transaction": record.to_api_dict(), "message": "Status updated"}
