"""Raw image upload and delete endpoints."""
import logging

from fastapi import APIRouter, File, UploadFile

from intake.api.dependencies import BaseUrlDep, ImageStorageDep, candidate_from_upload
from intake.models.schemas import DeleteAssetIn, MessageOut, StoredAssetOut
from intake.utils.urls import externalize

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.post("/{category}", response_model=StoredAssetOut, status_code=201)
def upload_image(
    category: str,
    storage: ImageStorageDep,
    base_url: BaseUrlDep,
    file: UploadFile = File(..., description="JPEG, PNG, WebP or HEIC image, max 5MB"),
):
    """Validate and store one image under ``category``.

    The caller owns the returned URL and must delete it when the record
    referencing it is discarded.
    """
    asset = storage.commit(candidate_from_upload(file, category), category)
    return StoredAssetOut(
        filename=asset.filename,
        url=externalize(asset.url, base_url, storage.marker),
        size=asset.size,
        format=asset.format.value,
        category=asset.category,
    )


@router.delete("", response_model=MessageOut)
def delete_image(payload: DeleteAssetIn, storage: ImageStorageDep):
    """Delete a stored image by URL; unknown or already deleted URLs succeed."""
    storage.delete(payload.url)
    return MessageOut(detail="Image deleted")
