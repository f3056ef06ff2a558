"""
Asset lifecycle: keeps one record field in step with one stored object.

The object store and MongoDB are two independent systems, so every operation
runs its I/O strictly in sequence:

    put_asset:    upload -> commit new reference -> delete previous object
    delete_asset: delete stored object -> clear reference

A previous object is never deleted before the new reference is committed.
If the commit fails after a successful upload, the new object is left as an
orphan; nothing collects orphans automatically.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo.database import Database

from database import utcnow
from errors import AssetNotFound, NotFound, PartialCleanupFailure, ValidationError
from schemas import StoredObject

logger = logging.getLogger(__name__)

ROOT_FOLDER = os.getenv("UPLOAD_ROOT_FOLDER", "portfolio-hub")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))


@dataclass
class ImageSlot:
    """A single-valued image field, e.g. portfolios.header_image."""
    collection: str
    owner_id: ObjectId
    field: str
    # When set, delete_asset only proceeds if the slot holds this id.
    public_id: Optional[str] = None


@dataclass
class GallerySlot:
    """An array of images; entries are addressed by public id."""
    collection: str
    owner_id: ObjectId
    field: str
    public_id: Optional[str] = None


Slot = Union[ImageSlot, GallerySlot]


class UploadOptions(BaseModel):
    folder: Optional[str] = None
    desired_public_id: Optional[str] = None
    resource_type: str = "auto"
    content_type: Optional[str] = None


def default_folder(slot: Slot) -> str:
    return f"{ROOT_FOLDER}/{slot.collection}/{slot.owner_id}/{slot.field}"


@contextmanager
def staged_input(path: str):
    """Yield a staged upload and remove it from disk however the block exits."""
    try:
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete temporary upload %s: %s", path, e)


class AssetManager:
    def __init__(self, db: Database, gateway):
        self.db = db
        self.gateway = gateway

    def _owner(self, slot: Slot) -> dict:
        doc = self.db[slot.collection].find_one({"_id": slot.owner_id}, {slot.field: 1})
        if not doc:
            raise NotFound(f"{slot.collection} record {slot.owner_id} not found")
        return doc

    def _validate(self, source_path: str, options: UploadOptions) -> None:
        if options.content_type is not None and not options.content_type.startswith("image/"):
            raise ValidationError("Only image files are allowed")
        try:
            size = os.path.getsize(source_path)
        except OSError:
            raise ValidationError("No image file provided")
        if size == 0:
            raise ValidationError("Uploaded file is empty")
        if size > MAX_UPLOAD_BYTES:
            raise ValidationError(f"File too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB.")

    def _commit(self, slot: Slot, stored: StoredObject, in_place: bool = False) -> None:
        ref = stored.as_ref().model_dump()
        query = {"_id": slot.owner_id}
        if isinstance(slot, GallerySlot) and in_place:
            # Overwritten gallery entry: update it where it stands instead of appending a twin.
            query[f"{slot.field}.public_id"] = stored.public_id
            update = {"$set": {f"{slot.field}.$": ref, "updated_at": utcnow()}}
        elif isinstance(slot, GallerySlot):
            update = {"$push": {slot.field: ref}, "$set": {"updated_at": utcnow()}}
        else:
            update = {"$set": {slot.field: ref, "updated_at": utcnow()}}
        try:
            result = self.db[slot.collection].update_one(query, update)
        except Exception:
            logger.warning("Record update failed, stored object %s is orphaned", stored.public_id)
            raise
        if result.matched_count == 0:
            logger.warning("%s record %s vanished, stored object %s is orphaned",
                           slot.collection, slot.owner_id, stored.public_id)
            raise NotFound(f"{slot.collection} record {slot.owner_id} not found")

    def put_asset(self, slot: Slot, source_path: str, options: Optional[UploadOptions] = None) -> StoredObject:
        """Upload `source_path` into `slot`, then retire the object it replaces.

        The staged file is removed on every exit path. Storage failures raise
        StorageUnavailable and leave the record untouched.
        """
        options = options or UploadOptions()
        with staged_input(source_path):
            self._validate(source_path, options)
            owner = self._owner(slot)
            previous = None
            gallery_ids = set()
            if isinstance(slot, ImageSlot) and owner.get(slot.field):
                previous = owner[slot.field].get("public_id")
            elif isinstance(slot, GallerySlot):
                gallery_ids = {e.get("public_id") for e in owner.get(slot.field) or []}

            stored = self.gateway.upload(
                source_path,
                folder=options.folder or default_folder(slot),
                public_id=options.desired_public_id,
                overwrite=options.desired_public_id is not None,
                resource_type=options.resource_type,
            )
            self._commit(slot, stored, in_place=stored.public_id in gallery_ids)

        # Same id means the object was overwritten in place.
        if previous and previous != stored.public_id:
            self.discard([previous])
        return stored

    def delete_asset(self, slot: Slot) -> str:
        """Delete the stored object, then clear the reference. Returns the deleted public id."""
        owner = self._owner(slot)
        collection = self.db[slot.collection]

        if isinstance(slot, GallerySlot):
            entries = owner.get(slot.field) or []
            if not entries:
                raise AssetNotFound("Gallery is empty")
            if not any(e.get("public_id") == slot.public_id for e in entries):
                raise AssetNotFound(f"Gallery image {slot.public_id} not found")
            public_id = slot.public_id
            self.gateway.delete(public_id)
            collection.update_one(
                {"_id": slot.owner_id},
                {"$pull": {slot.field: {"public_id": public_id}}, "$set": {"updated_at": utcnow()}},
            )
            return public_id

        current = owner.get(slot.field)
        if not current or (slot.public_id and current.get("public_id") != slot.public_id):
            raise AssetNotFound(f"No image in {slot.field}")
        public_id = current["public_id"]
        self.gateway.delete(public_id)
        # Only clear the field if it still points at the object just deleted.
        collection.update_one(
            {"_id": slot.owner_id, f"{slot.field}.public_id": public_id},
            {"$unset": {slot.field: ""}, "$set": {"updated_at": utcnow()}},
        )
        return public_id

    def discard(self, public_ids: Iterable[str]) -> List[str]:
        """Best-effort deletion of objects no record references any more.

        Each failure is logged and skipped; returns the ids that could not be deleted.
        """
        failed = []
        for public_id in public_ids:
            if not public_id:
                continue
            try:
                self.gateway.delete(public_id)
            except Exception as e:
                logger.warning("%s", PartialCleanupFailure(public_id, e).message)
                failed.append(public_id)
        return failed
