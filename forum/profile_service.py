import logging
import os
import time
from typing import Optional

from flask import current_app
from werkzeug.datastructures import FileStorage

import gateway
from errors import (
    ConstraintError, DuplicateUsernameError, NotFoundError, StorageError, UploadError, ValidationError,
)
from identity_service import get_user

logger = logging.getLogger(__name__)

# Raster formats browsers render as images. The stored extension comes from
# here, never from the client filename, so nothing is served back as markup.
AVATAR_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def view_profile(user_id: int) -> dict:
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("That user does not exist.")
    return user


def _avatar_size(avatar: FileStorage) -> int:
    stream = avatar.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def check_avatar(avatar: FileStorage) -> None:
    """Raise UploadError unless the upload is an image within the size cap."""
    if avatar.mimetype not in AVATAR_EXTENSIONS:
        raise UploadError("Only image files are allowed.")
    limit = current_app.config["MAX_AVATAR_BYTES"]
    if _avatar_size(avatar) > limit:
        raise UploadError(f"Images must be {limit // (1024 * 1024)} MB or smaller.")


def store_avatar(user_id: int, avatar: FileStorage) -> str:
    """Save the file as <user id>-<epoch ms><ext> and return its URL path."""
    ext = AVATAR_EXTENSIONS[avatar.mimetype]
    filename = f"{user_id}-{int(time.time() * 1000)}{ext}"

    subdir = current_app.config["AVATAR_SUBDIR"]
    folder = os.path.join(current_app.config["UPLOAD_ROOT"], subdir)
    os.makedirs(folder, exist_ok=True)
    avatar.save(os.path.join(folder, filename))

    return f"/uploads/{subdir}/{filename}"


def _remove_stored(avatar_path: str) -> None:
    relative = avatar_path[len("/uploads/"):]
    try:
        os.remove(os.path.join(current_app.config["UPLOAD_ROOT"], relative))
    except OSError:
        logger.warning("Could not remove orphaned avatar %s", avatar_path)


def update_profile(user_id: int, new_username: str, avatar: Optional[FileStorage] = None) -> dict:
    """
    Overwrite the username and, when a file is given, the avatar.

    The upload is checked before anything is written, so a rejected file
    leaves the profile untouched. A rename onto an existing username is
    refused by the unique index.
    """
    new_username = (new_username or "").strip()
    if not new_username:
        raise ValidationError("Username is required.")

    current = view_profile(user_id)
    avatar_path = current["avatar"]
    stored = None

    # Browsers send an empty file part when nothing was chosen.
    if avatar is not None and avatar.filename:
        try:
            check_avatar(avatar)
        except UploadError:
            logger.info("Rejected avatar upload for user %s", user_id)
            raise
        stored = avatar_path = store_avatar(user_id, avatar)

    try:
        gateway.mutate(
            "UPDATE users SET username = :username, avatar = :avatar WHERE id = :id",
            {"username": new_username, "avatar": avatar_path, "id": user_id},
            operation="update_profile",
        )
    except ConstraintError as exc:
        if stored:
            _remove_stored(stored)
        raise DuplicateUsernameError() from exc
    except StorageError:
        if stored:
            _remove_stored(stored)
        raise

    return view_profile(user_id)
