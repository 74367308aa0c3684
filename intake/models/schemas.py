from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class MessageOut(BaseModel):
    detail: str


class StoredAssetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    url: str
    size: int
    format: str
    category: str


class DeleteAssetIn(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)


class PostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: str
    title: str
    content: str
    image_url: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class PostUpdateOut(BaseModel):
    detail: str
    updated_fields: dict[str, bool]
    data: PostOut
