"""Purchase and delivery API endpoints."""

from fastapi import APIRouter, Depends, Path, Response, Security
from pydantic import BaseModel

from auth import SessionUser, csrf_matches, get_current_user
from transactions import TransactionManager
from ..deps import get_transaction_manager, http_error

# Create router
router = APIRouter(tags=["Transactions"])

class BuyRequest(BaseModel):
    """Request model for buying an item."""
    csrf_token: str
    item_id: int
    token: str

class TradeRequest(BaseModel):
    """Request model for ship, ship_done and complete."""
    csrf_token: str
    item_id: int

class TransactionResponse(BaseModel):
    transaction_evidence_id: int

class ShipResponse(BaseModel):
    path: str
    reserve_id: str

@router.post("/buy", response_model=TransactionResponse)
async def buy(
    request: BuyRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Buy an item on sale."""
    try:
        evidence_id = await manager.buy(
            item_id=request.item_id,
            buyer_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token),
            payment_token=request.token
        )
        return {'transaction_evidence_id': evidence_id}
    except Exception as e:
        raise http_error(e)

@router.post("/ship", response_model=ShipResponse)
async def ship(
    request: TradeRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Request a pickup for a sold item."""
    try:
        return await manager.ship(
            item_id=request.item_id,
            seller_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token)
        )
    except Exception as e:
        raise http_error(e)

@router.post("/ship_done", response_model=TransactionResponse)
async def ship_done(
    request: TradeRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Confirm that the carrier picked up the item."""
    try:
        evidence_id = await manager.ship_done(
            item_id=request.item_id,
            seller_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token)
        )
        return {'transaction_evidence_id': evidence_id}
    except Exception as e:
        raise http_error(e)

@router.post("/complete", response_model=TransactionResponse)
async def complete(
    request: TradeRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Complete a purchase after delivery."""
    try:
        evidence_id = await manager.complete(
            item_id=request.item_id,
            buyer_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token)
        )
        return {'transaction_evidence_id': evidence_id}
    except Exception as e:
        raise http_error(e)

@router.get("/transactions/{evidence_id}.png")
async def get_label(
    evidence_id: int = Path(..., gt=0),
    current_user: SessionUser = Security(get_current_user),
    manager: TransactionManager = Depends(get_transaction_manager)
):
    """Get the pickup label image of a transaction."""
    try:
        label = await manager.get_label(evidence_id, seller_id=current_user.id)
    except Exception as e:
        raise http_error(e)
    return Response(content=label, media_type="image/png")
