import logging

from fastapi import APIRouter

from blogcore.config import settings
from blogcore.dependencies import CurrentUser
from blogcore.errors import AuthorizationError, NotFoundError
from blogcore.models import User
from blogcore.schemas import Envelope, ImageUpload
from blogcore.storage import media_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])


def _user_folder(user: User) -> str:
    # Editor uploads are keyed by uploader; covers and avatars live elsewhere.
    return f"{settings.MEDIA_UPLOAD_FOLDER}/{user.id}"


@router.post("/image", status_code=201, response_model=Envelope)
async def upload_image(data: ImageUpload, user: CurrentUser):
    stored = await media_storage.store(data.image, _user_folder(user))
    logger.info("User %s uploaded %s", user.id, stored.public_id)
    return Envelope(data={"url": stored.url, "public_id": stored.public_id})


@router.delete("/image/{public_id:path}", response_model=Envelope)
async def delete_image(public_id: str, user: CurrentUser):
    if not public_id.startswith(_user_folder(user) + "/"):
        raise AuthorizationError("Not authorized to delete this image")
    # Deletion failures here are the primary effect, so they surface as 502.
    if not await media_storage.delete(public_id):
        raise NotFoundError("Image")
    return Envelope(data={"message": "Image deleted"})
