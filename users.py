"""
User profile pictures: the same single-slot lifecycle as a portfolio header image.
"""

from typing import Optional

from pymongo.database import Database

from assets import AssetManager, ImageSlot, UploadOptions, staged_input
from database import to_object_id, to_public
from errors import NotFound
from schemas import StoredObject, User

COLLECTION = "users"


class UserService:
    def __init__(self, db: Database, assets: AssetManager):
        self.collection = db[COLLECTION]
        self.assets = assets

    def get_user(self, user_id: str) -> User:
        oid = to_object_id(user_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("User not found")
        return User.model_validate(to_public(doc))

    def _slot(self, user_id: str) -> ImageSlot:
        oid = to_object_id(user_id)
        if not oid:
            raise NotFound("User not found")
        return ImageSlot(COLLECTION, oid, "profile_picture")

    def upload_profile_picture(self, user_id: str, source_path: str, content_type: Optional[str] = None) -> StoredObject:
        with staged_input(source_path):
            slot = self._slot(user_id)
            return self.assets.put_asset(slot, source_path, UploadOptions(content_type=content_type))

    def delete_profile_picture(self, user_id: str) -> str:
        return self.assets.delete_asset(self._slot(user_id))
