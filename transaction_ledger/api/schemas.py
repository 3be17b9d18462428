"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from ..models import Transaction, TransactionRequest, Page


class CreateTransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_number: Optional[str] = Field(None, alias="accountNumber", description="8-12 digit account number")
    amount: Optional[Decimal] = Field(None, description="Amount with at most two decimal places")
    transaction_type: Optional[str] = Field(None, alias="type", description="Transaction type (DEPOSIT, WITHDRAWAL, ...)")
    description: Optional[str] = None
    transaction_date: Optional[datetime] = Field(None, alias="transactionDate", description="Defaults to now")
    notes: Optional[str] = None
    reference: Optional[str] = Field(None, description="Ignored; references are generated")

    def to_request(self) -> TransactionRequest:
        return TransactionRequest(
            account_number=self.account_number,
            amount=self.amount,
            transaction_type=self.transaction_type,
            description=self.description,
            transaction_date=self.transaction_date,
            notes=self.notes,
        )


class UpdateTransactionRequestModel(BaseModel):
    # Extra fields are kept so the service can report what it ignored
    model_config = ConfigDict(extra="allow")

    description: Optional[str] = None
    notes: Optional[str] = None


class TransactionResponse(BaseModel):
    id: int
    reference: str
    account_number: str
    amount: Decimal
    type: str
    description: str
    transaction_date: datetime
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            id=transaction.id,
            reference=transaction.reference,
            account_number=transaction.account_number,
            amount=transaction.amount,
            type=transaction.transaction_type.value,
            description=transaction.description,
            transaction_date=transaction.transaction_date,
            status=transaction.status.value,
            notes=transaction.notes,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )


class PageResponse(BaseModel):
    content: List[TransactionResponse]
    page_number: int
    page_size: int
    total_elements: int
    total_pages: int
    is_first: bool
    is_last: bool

    @classmethod
    def from_page(cls, page: Page) -> 'PageResponse':
        return cls(
            content=[TransactionResponse.from_transaction(t) for t in page.content],
            page_number=page.page_number,
            page_size=page.page_size,
            total_elements=page.total_elements,
            total_pages=page.total_pages,
            is_first=page.is_first,
            is_last=page.is_last,
        )


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    status: int
    timestamp: datetime
    path: str
    details: Optional[Dict[str, Any]] = None
