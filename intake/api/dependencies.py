"""Common dependencies shared by the upload and post routers."""
import os
from typing import Annotated, TypeAlias

from fastapi import Depends, UploadFile
from sqlalchemy.orm import Session

from intake.core.config import settings
from intake.db.session import get_db
from intake.services.upload_validator import UploadCandidate
from intake.storage.local_storage import LocalImageStorage, image_storage


def get_image_storage() -> LocalImageStorage:
    return image_storage


def get_base_url() -> str:
    return settings.BASE_URL


DbDep: TypeAlias = Annotated[Session, Depends(get_db)]
ImageStorageDep: TypeAlias = Annotated[LocalImageStorage, Depends(get_image_storage)]
BaseUrlDep: TypeAlias = Annotated[str, Depends(get_base_url)]


def has_file(upload: UploadFile | None) -> bool:
    """Browsers submit empty file inputs as a part without a filename."""
    return upload is not None and bool(upload.filename)


def candidate_from_upload(upload: UploadFile, category: str) -> UploadCandidate:
    size = upload.size
    if size is None:
        stream = upload.file
        position = stream.tell()
        size = stream.seek(0, os.SEEK_END) - position
        stream.seek(position)
    return UploadCandidate(
        stream=upload.file,
        filename=upload.filename or "",
        declared_size=size,
        category=category,
    )
