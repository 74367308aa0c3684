"""Posts (news, events, holes) that own at most one stored image.

Image ownership rules:
- a new image is committed provisionally and discarded if the record cannot
  be saved;
- a replaced or removed image is deleted only after the record no longer
  references it;
- image URLs are rewritten against the current base URL on every read.
"""
import logging

from fastapi import APIRouter, File, Form, Query, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake.api.dependencies import BaseUrlDep, DbDep, ImageStorageDep, candidate_from_upload, has_file
from intake.core.exceptions import ConflictingImageUpdateError, PostNotFoundError, UploadStorageError
from intake.models.models import Post
from intake.models.schemas import MessageOut, PostOut, PostUpdateOut
from intake.storage.local_storage import LocalImageStorage
from intake.utils.urls import externalize

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/posts", tags=["posts"])


def _present(post: Post, base_url: str, storage: LocalImageStorage) -> PostOut:
    out = PostOut.model_validate(post)
    out.image_url = externalize(post.image_url, base_url, storage.marker) or None
    return out


def _save(db: Session, post: Post) -> None:
    try:
        db.add(post)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to save post %s", post.id)
        raise


def _get_post(db: Session, category: str, post_id: str) -> Post:
    post = db.query(Post).filter(Post.id == post_id, Post.category == category).one_or_none()
    if post is None:
        raise PostNotFoundError(post_id, category)
    return post


def _release_image(storage: LocalImageStorage, image_url: str | None) -> None:
    """Delete an image no record references any more; the record is already saved."""
    if not image_url:
        return
    try:
        storage.delete(image_url)
    except UploadStorageError:
        logger.exception("Orphaned image %s could not be deleted", image_url)


@router.post("/{category}", response_model=PostOut, status_code=201)
def create_post(
    category: str,
    db: DbDep,
    storage: ImageStorageDep,
    base_url: BaseUrlDep,
    title: str = Form(..., min_length=1, max_length=255),
    content: str = Form(..., min_length=1),
    image: UploadFile | None = File(None),
):
    storage.check_category(category)
    post = Post(category=category, title=title, content=content)
    if has_file(image):
        with storage.provisional(candidate_from_upload(image, category), category) as asset:
            post.image_url = asset.url
            _save(db, post)
    else:
        _save(db, post)
    logger.info("Created %s post %s image=%s", category, post.id, post.image_url)
    return _present(post, base_url, storage)


@router.get("/{category}", response_model=list[PostOut])
def list_posts(
    category: str,
    db: DbDep,
    storage: ImageStorageDep,
    base_url: BaseUrlDep,
    limit: int = Query(20, ge=1, le=100),
):
    storage.check_category(category)
    posts = (
        db.query(Post)
        .filter(Post.category == category)
        .order_by(Post.created_at.desc())
        .limit(limit)
        .all()
    )
    return [_present(post, base_url, storage) for post in posts]


@router.get("/{category}/{post_id}", response_model=PostOut)
def get_post(category: str, post_id: str, db: DbDep, storage: ImageStorageDep, base_url: BaseUrlDep):
    return _present(_get_post(db, category, post_id), base_url, storage)


@router.put("/{category}/{post_id}", response_model=PostUpdateOut)
def update_post(
    category: str,
    post_id: str,
    db: DbDep,
    storage: ImageStorageDep,
    base_url: BaseUrlDep,
    title: str | None = Form(None, max_length=255),
    content: str | None = Form(None),
    delete_image: bool = Form(False),
    image: UploadFile | None = File(None),
):
    """Partial update; only the fields sent are changed.

    ``image`` replaces the current image and ``delete_image`` removes it; sending
    both is rejected before anything is touched.
    """
    if delete_image and has_file(image):
        raise ConflictingImageUpdateError()
    post = _get_post(db, category, post_id)
    updated: dict[str, bool] = {}
    if title:
        post.title = title
        updated["title"] = True
    if content:
        post.content = content
        updated["content"] = True

    old_image = post.image_url
    if delete_image:
        post.image_url = None
        updated["image_deleted"] = True
        _save(db, post)
        _release_image(storage, old_image)
    elif has_file(image):
        with storage.provisional(candidate_from_upload(image, category), category) as asset:
            post.image_url = asset.url
            updated["image_updated"] = True
            _save(db, post)
        _release_image(storage, old_image)
    elif updated:
        _save(db, post)

    return PostUpdateOut(
        detail="Post updated successfully",
        updated_fields=updated,
        data=_present(post, base_url, storage),
    )


@router.delete("/{category}/{post_id}", response_model=MessageOut)
def delete_post(category: str, post_id: str, db: DbDep, storage: ImageStorageDep):
    post = _get_post(db, category, post_id)
    image_url = post.image_url
    db.delete(post)
    db.commit()
    _release_image(storage, image_url)
    return MessageOut(detail="Post deleted successfully")
