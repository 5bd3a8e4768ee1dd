"""
Account directory endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import RegisterAccountRequest


router = APIRouter()


@router.post("", status_code=201)
def register_account(
    request: RegisterAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Register an account id so ledger entries may reference it"""
    try:
        account_id = system.account_directory.register(request.account_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    return {"account_id": account_id, "message": "Account registered"}


@router.get("")
def list_accounts(system: LedgerSystem = Depends(get_ledger_system)):
    """List registered account ids"""
    return {"accounts": system.account_directory.list_accounts()}
