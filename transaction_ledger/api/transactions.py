"""
Transaction endpoints
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from .dependencies import get_ledger_service
from .schemas import (
    CreateTransactionRequest, UpdateTransactionRequestModel,
    TransactionResponse, PageResponse
)
from ..service import LedgerService


router = APIRouter()


def _either(value, alias_value):
    """Prefer the snake_case query value, falling back to its camelCase alias"""
    return value if value is not None else alias_value


@router.post("", status_code=status.HTTP_201_CREATED, response_model=TransactionResponse)
def create_transaction(
    request: CreateTransactionRequest,
    service: LedgerService = Depends(get_ledger_service)
):
    """Create a transaction with a generated reference"""
    transaction = service.create(request.to_request())
    return TransactionResponse.from_transaction(transaction)


@router.get("", response_model=PageResponse)
def list_transactions(
    page: int = Query(0),
    size: Optional[int] = Query(None),
    sort_by: Optional[str] = Query(None),
    sort_dir: Optional[str] = Query(None),
    sort_by_alias: Optional[str] = Query(None, alias="sortBy", include_in_schema=False),
    sort_dir_alias: Optional[str] = Query(None, alias="sortDir", include_in_schema=False),
    service: LedgerService = Depends(get_ledger_service)
):
    """List all transactions"""
    result = service.list_transactions(
        page=page,
        size=size,
        sort_by=_either(sort_by, sort_by_alias),
        direction=_either(sort_dir, sort_dir_alias) or "desc",
    )
    return PageResponse.from_page(result)


@router.get("/recent", response_model=List[TransactionResponse])
def recent_transactions(
    limit: Optional[int] = Query(None),
    service: LedgerService = Depends(get_ledger_service)
):
    """Most recent transactions by transaction date"""
    return [TransactionResponse.from_transaction(t) for t in service.recent(limit)]


@router.get("/types", response_model=List[str])
def transaction_types(service: LedgerService = Depends(get_ledger_service)):
    """Catalog of transaction type names"""
    return service.list_types()


@router.get("/search", response_model=PageResponse)
def search_transactions(
    keyword: str = Query(...),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    service: LedgerService = Depends(get_ledger_service)
):
    """Search references and descriptions"""
    return PageResponse.from_page(service.search(keyword, page=page, size=size))


@router.get("/criteria", response_model=PageResponse)
def transactions_by_criteria(
    account_number: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    sort_by: Optional[str] = Query(None),
    sort_dir: Optional[str] = Query(None),
    account_number_alias: Optional[str] = Query(None, alias="accountNumber", include_in_schema=False),
    start_date_alias: Optional[datetime] = Query(None, alias="startDate", include_in_schema=False),
    end_date_alias: Optional[datetime] = Query(None, alias="endDate", include_in_schema=False),
    min_amount_alias: Optional[Decimal] = Query(None, alias="minAmount", include_in_schema=False),
    max_amount_alias: Optional[Decimal] = Query(None, alias="maxAmount", include_in_schema=False),
    sort_by_alias: Optional[str] = Query(None, alias="sortBy", include_in_schema=False),
    sort_dir_alias: Optional[str] = Query(None, alias="sortDir", include_in_schema=False),
    service: LedgerService = Depends(get_ledger_service)
):
    """Filter by any combination of account, type, dates and amounts"""
    result = service.list_by_criteria(
        account_number=_either(account_number, account_number_alias),
        transaction_type=type,
        start_date=_either(start_date, start_date_alias),
        end_date=_either(end_date, end_date_alias),
        min_amount=_either(min_amount, min_amount_alias),
        max_amount=_either(max_amount, max_amount_alias),
        page=page,
        size=size,
        sort_by=_either(sort_by, sort_by_alias),
        direction=_either(sort_dir, sort_dir_alias) or "desc",
    )
    return PageResponse.from_page(result)


@router.get("/date-range", response_model=PageResponse)
def transactions_by_date_range(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    start_date_alias: Optional[datetime] = Query(None, alias="startDate", include_in_schema=False),
    end_date_alias: Optional[datetime] = Query(None, alias="endDate", include_in_schema=False),
    service: LedgerService = Depends(get_ledger_service)
):
    result = service.list_by_date_range(
        _either(start_date, start_date_alias), _either(end_date, end_date_alias),
        page=page, size=size
    )
    return PageResponse.from_page(result)


@router.get("/amount-range", response_model=PageResponse)
def transactions_by_amount_range(
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    min_amount_alias: Optional[Decimal] = Query(None, alias="minAmount", include_in_schema=False),
    max_amount_alias: Optional[Decimal] = Query(None, alias="maxAmount", include_in_schema=False),
    service: LedgerService = Depends(get_ledger_service)
):
    result = service.list_by_amount_range(
        _either(min_amount, min_amount_alias), _either(max_amount, max_amount_alias),
        page=page, size=size
    )
    return PageResponse.from_page(result)


@router.get("/reference/{reference}", response_model=TransactionResponse)
def get_transaction_by_reference(
    reference: str,
    service: LedgerService = Depends(get_ledger_service)
):
    return TransactionResponse.from_transaction(service.get_by_reference(reference))


@router.get("/account/{account_number}", response_model=PageResponse)
def transactions_by_account(
    account_number: str,
    page: int = Query(0),
    size: Optional[int] = Query(None),
    service: LedgerService = Depends(get_ledger_service)
):
    return PageResponse.from_page(service.list_by_account(account_number, page=page, size=size))


@router.get("/account/{account_number}/count")
def transaction_count(
    account_number: str,
    service: LedgerService = Depends(get_ledger_service)
):
    return {
        "account_number": account_number,
        "count": service.count_by_account(account_number)
    }


@router.get("/account/{account_number}/balance")
def account_balance(
    account_number: str,
    service: LedgerService = Depends(get_ledger_service)
):
    """Deposits minus withdrawals"""
    return {
        "account_number": account_number,
        "balance": str(service.balance(account_number))
    }


@router.get("/account/{account_number}/balance/{transaction_type}")
def account_balance_by_type(
    account_number: str,
    transaction_type: str,
    service: LedgerService = Depends(get_ledger_service)
):
    balance = service.balance_by_type(account_number, transaction_type)
    return {
        "account_number": account_number,
        "type": transaction_type.upper(),
        "balance": str(balance)
    }


@router.get("/type/{transaction_type}", response_model=PageResponse)
def transactions_by_type(
    transaction_type: str,
    page: int = Query(0),
    size: Optional[int] = Query(None),
    service: LedgerService = Depends(get_ledger_service)
):
    return PageResponse.from_page(service.list_by_type(transaction_type, page=page, size=size))


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    service: LedgerService = Depends(get_ledger_service)
):
    return TransactionResponse.from_transaction(service.get_by_id(transaction_id))


@router.put("/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    request: UpdateTransactionRequestModel,
    service: LedgerService = Depends(get_ledger_service)
):
    """Update description and notes; all other fields are immutable"""
    transaction = service.update(transaction_id, request.model_dump())
    return TransactionResponse.from_transaction(transaction)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transaction(
    transaction_id: int,
    service: LedgerService = Depends(get_ledger_service)
):
    service.delete(transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
