"""Hairstyle catalog endpoints.

Static sample data only: the catalog is not persisted yet.
- GET /api/v1/hairstyles - List hairstyles
- GET /api/v1/hairstyles/{style_id} - Get one hairstyle
- POST /api/v1/hairstyles - Echo a created hairstyle
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from tryon.api.dependencies import general_rate_limit

router = APIRouter(
    prefix="/api/v1/hairstyles",
    tags=["hairstyles"],
    dependencies=[Depends(general_rate_limit)],
)

SAMPLE_HAIRSTYLES: list[dict[str, Any]] = [
    {
        "id": "pixie-cut",
        "name": {"en": "Pixie Cut", "es": "Corte Pixie"},
        "tags": ["short", "bold"],
        "thumbnailUrl": "https://example.com/hairstyles/pixie-cut.jpg",
    },
    {
        "id": "soft-layers",
        "name": {"en": "Soft Layers", "es": "Capas Suaves"},
        "tags": ["medium", "versatile"],
        "thumbnailUrl": "https://example.com/hairstyles/soft-layers.jpg",
    },
]


class CreateHairstyleRequest(BaseModel):
    name: dict[str, str] = Field(..., description="Localized display names keyed by language")
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: str | None = Field(default=None, alias="thumbnailUrl")


@router.get("")
async def list_hairstyles() -> dict[str, Any]:
    return {"data": SAMPLE_HAIRSTYLES, "meta": {"total": len(SAMPLE_HAIRSTYLES)}}


@router.get("/{style_id}")
async def get_hairstyle(style_id: str) -> dict[str, Any]:
    for hairstyle in SAMPLE_HAIRSTYLES:
        if hairstyle["id"] == style_id:
            return {"data": hairstyle}

    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hairstyle not found")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_hairstyle(request: CreateHairstyleRequest) -> dict[str, Any]:
    return {"data": {"id": "new-hairstyle-id", **request.model_dump(by_alias=True)}}
