"""API endpoints for courier earnings, client wallets, payouts and financial reports."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from lastmile.api.deps import DB, Permissions, require_permissions, ensure_self_or_permission
from lastmile.core.permissions import Permission
from lastmile.schemas.ledger import (
    CourierTransactionResponse,
    ClientTransactionResponse,
    PenaltyCreate,
    FailedDeliveryPenaltyCreate,
    PayoutRequestCreate,
    PayoutProcess,
    PayoutDecline,
    CourierFinancials,
    ClientFinancials,
    WalletResponse,
    AdminFinancials,
)
from lastmile.services.ledger_service import LedgerService

router = APIRouter()


# ==================== Courier ledger ====================

@router.get("/couriers/{courier_id}/transactions", response_model=List[CourierTransactionResponse])
async def courier_transactions(courier_id: UUID, db: DB, permissions: Permissions):
    """Ledger entries for one courier, newest first."""
    ensure_self_or_permission(permissions, courier_id, Permission.MANAGE_COURIER_PAYOUTS)
    return await LedgerService(db).list_courier_entries(courier_id)


@router.get("/couriers/{courier_id}/financials", response_model=CourierFinancials)
async def courier_financials(courier_id: UUID, db: DB, permissions: Permissions):
    """Earnings, penalties, withdrawals and balance for one courier."""
    ensure_self_or_permission(permissions, courier_id, Permission.MANAGE_COURIER_PAYOUTS)
    return await LedgerService(db).courier_financials(courier_id)


@router.post(
    "/couriers/{courier_id}/penalties",
    response_model=CourierTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.MANAGE_COURIER_PAYOUTS))],
)
async def apply_penalty(courier_id: UUID, data: PenaltyCreate, db: DB):
    """Charge a courier a manual penalty."""
    return await LedgerService(db).apply_penalty(
        courier_id, data.amount, data.description, shipment_id=data.shipment_id
    )


@router.post(
    "/couriers/{courier_id}/failed-delivery-penalty",
    response_model=CourierTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.MANAGE_COURIER_PAYOUTS))],
)
async def apply_failed_delivery_penalty(courier_id: UUID, data: FailedDeliveryPenaltyCreate, db: DB):
    """Charge a courier the package value of a failed delivery."""
    return await LedgerService(db).apply_failed_delivery_penalty(
        courier_id, data.shipment_id, data.description
    )


@router.post(
    "/couriers/payouts",
    response_model=CourierTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_courier_payout(data: PayoutRequestCreate, db: DB, permissions: Permissions):
    """Request a withdrawal of courier earnings."""
    courier_id = data.owner_id or permissions.user.id
    ensure_self_or_permission(permissions, courier_id, Permission.MANAGE_COURIER_PAYOUTS)
    return await LedgerService(db).request_payout(courier_id, data.amount)


@router.get(
    "/couriers/payouts/pending",
    response_model=List[CourierTransactionResponse],
    dependencies=[Depends(require_permissions(Permission.MANAGE_COURIER_PAYOUTS))],
)
async def pending_courier_payouts(db: DB):
    return await LedgerService(db).list_pending_payouts()


@router.put(
    "/couriers/payouts/{entry_id}/process",
    response_model=CourierTransactionResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_COURIER_PAYOUTS))],
)
async def process_courier_payout(entry_id: UUID, data: PayoutProcess, db: DB):
    """Mark a pending courier payout as paid."""
    return await LedgerService(db).process_payout(
        entry_id, data.payment_method, data.transfer_evidence
    )


@router.put(
    "/couriers/payouts/{entry_id}/decline",
    response_model=CourierTransactionResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_COURIER_PAYOUTS))],
)
async def decline_courier_payout(entry_id: UUID, data: PayoutDecline, db: DB):
    return await LedgerService(db).decline_payout(entry_id, data.reason)


# ==================== Client wallet ====================

@router.get("/clients/{client_id}/wallet", response_model=WalletResponse)
async def client_wallet(client_id: UUID, db: DB, permissions: Permissions):
    """Wallet balance and entries for one client."""
    ensure_self_or_permission(permissions, client_id, Permission.MANAGE_CLIENT_PAYOUTS)
    service = LedgerService(db)
    transactions = await service.list_client_entries(client_id)
    return WalletResponse(
        client_id=client_id,
        balance=await service.client_wallet_balance(client_id),
        transactions=[ClientTransactionResponse.model_validate(t) for t in transactions],
    )


@router.get("/clients/{client_id}/financials", response_model=ClientFinancials)
async def client_financials(client_id: UUID, db: DB, permissions: Permissions):
    ensure_self_or_permission(permissions, client_id, Permission.VIEW_ADMIN_FINANCIALS)
    return await LedgerService(db).client_financials(client_id)


@router.post(
    "/clients/payouts",
    response_model=ClientTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_client_payout(data: PayoutRequestCreate, db: DB, permissions: Permissions):
    """Request a withdrawal from a client wallet."""
    client_id = data.owner_id or permissions.user.id
    ensure_self_or_permission(permissions, client_id, Permission.MANAGE_CLIENT_PAYOUTS)
    return await LedgerService(db).request_client_payout(client_id, data.amount)


@router.get(
    "/clients/payouts/pending",
    response_model=List[ClientTransactionResponse],
    dependencies=[Depends(require_permissions(Permission.MANAGE_CLIENT_PAYOUTS))],
)
async def pending_client_payouts(db: DB):
    return await LedgerService(db).list_pending_payouts(client_ledger=True)


@router.put(
    "/clients/payouts/{entry_id}/process",
    response_model=ClientTransactionResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_CLIENT_PAYOUTS))],
)
async def process_client_payout(entry_id: UUID, data: PayoutProcess, db: DB):
    return await LedgerService(db).process_client_payout(
        entry_id, data.payment_method, data.transfer_evidence
    )


@router.put(
    "/clients/payouts/{entry_id}/decline",
    response_model=ClientTransactionResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_CLIENT_PAYOUTS))],
)
async def decline_client_payout(entry_id: UUID, data: PayoutDecline, db: DB):
    return await LedgerService(db).decline_client_payout(entry_id, data.reason)


# ==================== Reports ====================

@router.get(
    "/clients/financials",
    response_model=List[ClientFinancials],
    dependencies=[Depends(require_permissions(Permission.VIEW_ADMIN_FINANCIALS))],
)
async def all_client_financials(db: DB):
    """Per-client summary for every client."""
    return await LedgerService(db).all_client_financials()


@router.get(
    "/admin/financials",
    response_model=AdminFinancials,
    dependencies=[Depends(require_permissions(Permission.VIEW_ADMIN_FINANCIALS))],
)
async def admin_financials(db: DB):
    """Company-wide financial totals."""
    return await LedgerService(db).admin_financials()
