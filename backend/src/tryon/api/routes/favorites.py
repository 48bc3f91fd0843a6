"""Favorites endpoints.

Stub handlers with no persistence; favorites are not yet scoped to a user.
- GET /api/v1/favorites - List favorites
- POST /api/v1/favorites - Echo a created favorite
- DELETE /api/v1/favorites/{favorite_id} - Acknowledge a deletion
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from tryon.api.dependencies import general_rate_limit

router = APIRouter(
    prefix="/api/v1/favorites",
    tags=["favorites"],
    dependencies=[Depends(general_rate_limit)],
)

SAMPLE_FAVORITES: list[dict[str, Any]] = [
    {
        "id": "fav_1",
        "styleId": "pixie-cut",
        "resultUrl": "https://example.com/results/pixie-cut-result.jpg",
        "createdAt": "2025-01-01T00:00:00+00:00",
    },
]


class CreateFavoriteRequest(BaseModel):
    style_id: str = Field(..., alias="styleId", min_length=1)
    result_url: str | None = Field(default=None, alias="resultUrl")


@router.get("")
async def list_favorites() -> dict[str, Any]:
    return {"data": SAMPLE_FAVORITES, "meta": {"total": len(SAMPLE_FAVORITES)}}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_favorite(request: CreateFavoriteRequest) -> dict[str, Any]:
    return {
        "data": {
            "id": "fav_new",
            **request.model_dump(by_alias=True),
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
    }


@router.delete("/{favorite_id}")
async def delete_favorite(favorite_id: str) -> dict[str, Any]:
    return {"data": {"id": favorite_id}}
