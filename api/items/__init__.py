"""Item API endpoints."""

from fastapi import APIRouter, Depends, Path, Security
from typing import Any, Dict
from pydantic import BaseModel

from auth import SessionUser, csrf_matches, get_current_user
from items import ItemManager
from ..deps import get_item_manager, http_error

# Create router
router = APIRouter(tags=["Items"])

class ItemEditRequest(BaseModel):
    """Request model for changing an item's price."""
    csrf_token: str
    item_id: int
    item_price: int

class BumpRequest(BaseModel):
    """Request model for bumping an item."""
    csrf_token: str
    item_id: int

class ItemSnapshot(BaseModel):
    """Response model for edit and bump."""
    item_id: int
    item_price: int
    item_created_at: int
    item_updated_at: int

@router.get("/items/{item_id}")
async def get_item(
    item_id: int = Path(..., gt=0),
    current_user: SessionUser = Security(get_current_user),
    manager: ItemManager = Depends(get_item_manager)
) -> Dict[str, Any]:
    """Get an item with its seller, category and, for its parties, trade status."""
    try:
        return await manager.get_item(item_id, viewer_id=current_user.id)
    except Exception as e:
        raise http_error(e)

@router.post("/items/edit", response_model=ItemSnapshot)
async def edit_item(
    request: ItemEditRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: ItemManager = Depends(get_item_manager)
):
    """Change the price of an item on sale."""
    try:
        return await manager.edit_price(
            item_id=request.item_id,
            seller_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token),
            price=request.item_price
        )
    except Exception as e:
        raise http_error(e)

@router.post("/bump", response_model=ItemSnapshot)
async def bump_item(
    request: BumpRequest,
    current_user: SessionUser = Security(get_current_user),
    manager: ItemManager = Depends(get_item_manager)
):
    """Move an item to the top of the listings."""
    try:
        return await manager.bump(
            item_id=request.item_id,
            seller_id=current_user.id,
            auth_ok=csrf_matches(current_user.csrf_token, request.csrf_token)
        )
    except Exception as e:
        raise http_error(e)
