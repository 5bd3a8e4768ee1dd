"""
Pydantic schemas for API requests

Field values are passed through to the ledger's own validation so that
constraint violations come back with the ledger's field and reason.
"""

from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


Number = Union[str, int, float]


class CreateTransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    from_account_id: Optional[str] = Field(None, alias="from")
    to_account_id: Optional[str] = Field(None, alias="to")
    amount: Optional[Number] = Field(None, description="Decimal amount, at least 0.01")
    transaction_type: Optional[str] = Field(None, alias="type", description="sent or received")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    note: Optional[str] = None
    description: Optional[str] = None
    fee: Optional[Number] = None


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    from_account_id: Optional[str] = Field(None, alias="from")
    to_account_id: Optional[str] = Field(None, alias="to")
    amount: Optional[Number] = None
    note: Optional[str] = None
    description: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="pending, completed or failed")
    description: Optional[str] = None


class RegisterAccountRequest(BaseModel):
    account_id: str
