"""
Creations API.

- GET    /api/creations: list with per-read lock flags
- GET    /api/creations/{id}: signed asset URLs (404 when locked)
- POST   /api/creations: save, consuming one credit (402 when none left)
- DELETE /api/creations/{id}: soft delete, frees a slot for non-premium users
"""
from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from drawbook.core.auth import get_current_user_id
from drawbook.features.creations import service as creations
from drawbook.models.creation import Creation, CreationDetail, NewCreation

router = APIRouter(prefix="/creations", tags=["creations"])


class CreationListResponse(BaseModel):
    creations: List[Creation]
    locked_count: int


@router.get("", response_model=CreationListResponse)
async def list_creations(user_id: str = Depends(get_current_user_id)):
    items = creations.list_accessible_creations(user_id)
    return {"creations": items, "locked_count": sum(1 for item in items if item.is_locked)}


@router.get("/{creation_id}", response_model=CreationDetail)
async def get_creation(creation_id: str, user_id: str = Depends(get_current_user_id)):
    return creations.get_creation(user_id, creation_id)


@router.post("", response_model=Creation, status_code=201)
async def save_creation(body: NewCreation, user_id: str = Depends(get_current_user_id)):
    return creations.save_creation(user_id, body)


@router.delete("/{creation_id}", status_code=204)
async def delete_creation(creation_id: str, user_id: str = Depends(get_current_user_id)):
    creations.delete_creation(user_id, creation_id)
    return Response(status_code=204)
