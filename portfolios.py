"""
Portfolio persistence: create, read, sparse update and image slots.

Subdomain and custom-domain uniqueness are enforced by unique indexes
(see database.ensure_indexes); a DuplicateKeyError on write is the only
signal of a clash, so there is no check-then-insert race.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from assets import AssetManager, GallerySlot, ImageSlot, UploadOptions, staged_input
from composition import PortfolioComposer, check_layout, check_theme, initial_selection
from database import create_document, to_object_id, to_public, utcnow
from errors import (
    DuplicateCustomDomain,
    DuplicateSubdomain,
    Forbidden,
    InvalidSubdomain,
    NotFound,
    ValidationError,
)
from schemas import (
    ImageRef,
    Portfolio,
    PortfolioCreate,
    PortfolioPatch,
    ResolvedPortfolio,
    StoredObject,
    Template,
)
from template_registry import TemplateRegistry

logger = logging.getLogger(__name__)

COLLECTION = "portfolios"
SUBDOMAIN_RE = re.compile(r"^[a-z0-9-]{3,30}$")
DOMAIN_RE = re.compile(r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$")


def normalize_subdomain(subdomain: Optional[str]) -> str:
    value = (subdomain or "").strip().lower()
    if not SUBDOMAIN_RE.match(value):
        raise InvalidSubdomain("Subdomain must be 3-30 characters of lowercase letters, numbers, and hyphens")
    return value


def normalize_custom_domain(domain: Optional[str]) -> Optional[str]:
    value = (domain or "").strip().lower()
    if not value:
        return None
    if not DOMAIN_RE.match(value):
        raise ValidationError("Please provide a valid domain name (e.g., example.com).")
    return value


def duplicate_error(exc: DuplicateKeyError, collection=None, custom_domain: Optional[str] = None, exclude_id=None) -> Exception:
    """Map a unique-index violation to the matching conflict.

    Uses the server's keyPattern when present, otherwise checks whether the
    custom domain is the value held by another portfolio.
    """
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    if "custom_domain" in key_pattern:
        clash = True
    elif "subdomain" in key_pattern or not (custom_domain and collection is not None):
        clash = False
    else:
        clash = collection.find_one({"custom_domain": custom_domain, "_id": {"$ne": exclude_id}}) is not None
    if clash:
        return DuplicateCustomDomain("This domain is already in use. Please choose a different one.")
    return DuplicateSubdomain("This subdomain is already taken")


class PortfolioService:
    def __init__(self, db: Database, assets: AssetManager, templates: TemplateRegistry):
        self.db = db
        self.collection = db[COLLECTION]
        self.assets = assets
        self.templates = templates

    # ---- loading ----

    def _find(self, portfolio_id: str) -> Tuple[Any, dict]:
        oid = to_object_id(portfolio_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("Portfolio not found")
        return oid, doc

    def owned(self, portfolio_id: str, user_id: str) -> Tuple[Any, dict]:
        oid, doc = self._find(portfolio_id)
        if doc.get("user_id") != user_id:
            raise Forbidden("Not authorized to modify this portfolio")
        return oid, doc

    @staticmethod
    def from_doc(doc: dict) -> Portfolio:
        return Portfolio.model_validate(to_public(doc))

    def template_for(self, portfolio: Portfolio) -> Optional[Template]:
        if not portfolio.template_id:
            return None
        try:
            return self.templates.get(portfolio.template_id)
        except NotFound:
            logger.warning("Template %s of portfolio %s no longer exists", portfolio.template_id, portfolio.id)
            return None

    # ---- create / read ----

    def create(self, user_id: str, data: PortfolioCreate) -> Portfolio:
        subdomain = normalize_subdomain(data.subdomain)
        custom_domain = normalize_custom_domain(data.custom_domain)
        doc = data.model_dump()
        if data.template_id:
            template = self.templates.get(data.template_id)
            # Unset selections start on the template's first options; given ones must exist.
            given = data.model_fields_set
            for field, value in initial_selection(template).items():
                if field not in given:
                    doc[field] = value
            if template.layouts:
                check_layout(template, doc["active_layout"])
            check_theme(
                template,
                doc["active_color_scheme"] if template.theme_options.color_schemes else None,
                doc["active_font_pairing"] if template.theme_options.font_pairings else None,
            )

        doc.update(
            user_id=user_id,
            title=data.title.strip(),
            subdomain=subdomain,
            custom_domain=custom_domain,
            gallery_images=[],
            is_published=False,
            view_count=0,
        )
        try:
            portfolio_id = create_document(self.db, COLLECTION, doc)
        except DuplicateKeyError as e:
            raise duplicate_error(e, self.collection, custom_domain) from e
        logger.info("Created portfolio %s (%s) for user %s", portfolio_id, subdomain, user_id)
        return self.get(portfolio_id, user_id)

    def get(self, portfolio_id: str, user_id: str) -> Portfolio:
        _, doc = self.owned(portfolio_id, user_id)
        return self.from_doc(doc)

    def list_for_user(self, user_id: str) -> List[Portfolio]:
        docs = self.collection.find({"user_id": user_id}).sort("updated_at", -1)
        return [self.from_doc(d) for d in docs]

    def get_by_subdomain(self, subdomain: str, require_published: bool = True) -> Portfolio:
        query: Dict[str, Any] = {"subdomain": (subdomain or "").strip().lower()}
        if require_published:
            query["is_published"] = True
        doc = self.collection.find_one(query)
        if not doc:
            raise NotFound("Portfolio not found")
        return self.from_doc(doc)

    def resolve(self, portfolio_id: str, user_id: str) -> ResolvedPortfolio:
        portfolio = self.get(portfolio_id, user_id)
        return PortfolioComposer(portfolio, self.template_for(portfolio)).resolve()

    # ---- updates ----

    def _write(self, oid, set_fields: Dict[str, Any], unset_fields: Optional[List[str]] = None) -> Portfolio:
        update: Dict[str, Any] = {"$set": {**set_fields, "updated_at": utcnow()}}
        if unset_fields:
            update["$unset"] = {f: "" for f in unset_fields}
        try:
            doc = self.collection.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise duplicate_error(e, self.collection, set_fields.get("custom_domain"), oid) from e
        if not doc:
            raise NotFound("Portfolio not found")
        return self.from_doc(doc)

    def update(self, portfolio_id: str, user_id: str, patch: PortfolioPatch) -> Portfolio:
        """Apply only the fields present in the patch.

        Stored objects dropped by the patch (a cleared or replaced header image,
        gallery entries no longer listed) are deleted after the record commits.
        """
        oid, doc = self.owned(portfolio_id, user_id)
        current = self.from_doc(doc)
        provided = patch.provided()
        set_fields: Dict[str, Any] = {}
        unset_fields: List[str] = []
        retired: List[str] = []

        if "title" in provided:
            title = (provided["title"] or "").strip()
            set_fields["title"] = title
        if "subtitle" in provided:
            if provided["subtitle"] is None:
                unset_fields.append("subtitle")
            else:
                set_fields["subtitle"] = provided["subtitle"].strip()
        if "subdomain" in provided:
            set_fields["subdomain"] = normalize_subdomain(provided["subdomain"])
        if "custom_domain" in provided:
            domain = normalize_custom_domain(provided["custom_domain"])
            if domain is None:
                # Absent rather than null, so the sparse unique index skips it.
                unset_fields.append("custom_domain")
            else:
                set_fields["custom_domain"] = domain
        if provided.get("content") is not None:
            set_fields["content"] = {**current.content, **provided["content"]}
        for name in ("section_variants", "animations_enabled", "style_preset"):
            if provided.get(name) is not None:
                set_fields[name] = provided[name]

        composer = PortfolioComposer(current, self.template_for(current))
        if provided.get("active_layout") is not None and provided["active_layout"] != current.active_layout:
            composer.set_layout(provided["active_layout"])
        scheme = provided.get("active_color_scheme")
        fonts = provided.get("active_font_pairing")
        if scheme is not None or fonts is not None:
            composer.set_theme(scheme, fonts)
        if provided.get("section_order") is not None:
            composer.reorder_sections(provided["section_order"])
        if composer.dirty:
            set_fields.update(composer.changes().model_dump(exclude_unset=True))

        if "header_image" in provided:
            new_header: Optional[ImageRef] = provided["header_image"]
            old_id = current.header_image.public_id if current.header_image else None
            if new_header is None:
                unset_fields.append("header_image")
            else:
                set_fields["header_image"] = new_header.model_dump()
            if old_id and (new_header is None or new_header.public_id != old_id):
                retired.append(old_id)
        if provided.get("gallery_images") is not None:
            kept = {img.public_id for img in provided["gallery_images"]}
            set_fields["gallery_images"] = [img.model_dump() for img in provided["gallery_images"]]
            retired.extend(img.public_id for img in current.gallery_images if img.public_id not in kept)

        updated = self._write(oid, set_fields, unset_fields)
        if retired:
            self.assets.discard(retired)
        return updated

    # ---- editor actions ----

    def _compose(self, portfolio_id: str, user_id: str, action) -> Portfolio:
        oid, doc = self.owned(portfolio_id, user_id)
        portfolio = self.from_doc(doc)
        composer = PortfolioComposer(portfolio, self.template_for(portfolio))
        action(composer)
        if not composer.dirty:
            return portfolio
        return self._write(oid, composer.changes().model_dump(exclude_unset=True))

    def set_section(self, portfolio_id: str, user_id: str, section_id: str, data: Any) -> Portfolio:
        # Written as a single field so concurrent edits to other sections are not overwritten.
        oid, doc = self.owned(portfolio_id, user_id)
        portfolio = self.from_doc(doc)
        composer = PortfolioComposer(portfolio, None)
        composer.set_section(section_id, data)
        return self._write(oid, {f"content.{section_id}": composer.portfolio.content[section_id]})

    def set_layout(self, portfolio_id: str, user_id: str, layout_id: str) -> Portfolio:
        return self._compose(portfolio_id, user_id, lambda c: c.set_layout(layout_id))

    def set_theme(self, portfolio_id: str, user_id: str, color_scheme_id: str, font_pairing_id: str) -> Portfolio:
        return self._compose(portfolio_id, user_id, lambda c: c.set_theme(color_scheme_id, font_pairing_id))

    def reorder_sections(self, portfolio_id: str, user_id: str, new_order: List[str]) -> Portfolio:
        return self._compose(portfolio_id, user_id, lambda c: c.reorder_sections(new_order))

    def set_custom_css(self, portfolio_id: str, user_id: str, css: str) -> Portfolio:
        return self._compose(portfolio_id, user_id, lambda c: c.set_custom_css(css))

    # ---- images ----

    def _slot(self, oid, slot: str, public_id: Optional[str] = None):
        if slot == "header":
            return ImageSlot(COLLECTION, oid, "header_image", public_id)
        if slot == "gallery":
            return GallerySlot(COLLECTION, oid, "gallery_images", public_id)
        raise ValidationError('Invalid image type. Must be "header" or "gallery"')

    def upload_image(
        self,
        portfolio_id: str,
        user_id: str,
        slot: str,
        source_path: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """Store a staged file in the header or gallery slot. The staged file is always removed."""
        with staged_input(source_path):
            oid, _ = self.owned(portfolio_id, user_id)
            image_slot = self._slot(oid, slot)
            return self.assets.put_asset(image_slot, source_path, UploadOptions(content_type=content_type))

    def delete_image(self, portfolio_id: str, user_id: str, slot: str, public_id: str) -> str:
        oid, _ = self.owned(portfolio_id, user_id)
        return self.assets.delete_asset(self._slot(oid, slot, public_id))

