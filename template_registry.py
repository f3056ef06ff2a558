"""
Template catalog stored in the "templates" collection.

Reads are always fresh from MongoDB. A template's usage count is derived
from the portfolios that reference it every time it is read, so it cannot
drift from the portfolios collection.
"""

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
import re
from typing import Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import create_document, to_object_id, to_public, utcnow
from errors import Conflict, DuplicateReview, NotFound, TemplateInUse, ValidationError
from schemas import (
    CategoryStat,
    ColorScheme,
    FontPairing,
    Layout,
    Review,
    Template,
    TemplateCreate,
    TemplatePage,
    TemplateSort,
    TemplateUpdate,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50
MAX_REVIEW_ATTEMPTS = 5

DEVELOPER_SECTIONS = ["header", "about", "projects", "skills", "experience", "education", "contact"]
DESIGNER_SECTIONS = ["header", "about", "gallery", "work", "clients", "testimonials", "contact"]
PHOTOGRAPHER_SECTIONS = ["header", "about", "galleries", "categories", "services", "pricing", "contact"]

DEFAULT_COLORS = {
    "developer": {"primary": "#6366f1", "secondary": "#8b5cf6", "background": "#ffffff", "text": "#111827"},
    "designer": {"primary": "#ec4899", "secondary": "#f43f5e", "background": "#ffffff", "text": "#111827"},
    "photographer": {"primary": "#000000", "secondary": "#404040", "background": "#ffffff", "text": "#111827"},
}

DEFAULT_FONTS = {
    "developer": {"heading": "Inter", "body": "Roboto"},
    "designer": {"heading": "Poppins", "body": "Montserrat"},
    "photographer": {"heading": "Playfair Display", "body": "Raleway"},
}

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "rating": [("rating.average", DESCENDING), ("rating.count", DESCENDING)],
    "name": [("name", ASCENDING)],
}


def average_rating(ratings: List[int]) -> float:
    """Mean rating to one decimal, halves rounded up (4.25 -> 4.3)."""
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _family(category: str) -> str:
    if category in ("designer", "creative"):
        return "designer"
    if category == "photographer":
        return "photographer"
    return "developer"


def apply_defaults(data: TemplateCreate) -> TemplateCreate:
    """Fill in a standard layout and theme options for templates created without them."""
    family = _family(data.category)
    data = data.model_copy(deep=True)
    if not data.layouts:
        sections = data.default_structure.sections or {
            "developer": DEVELOPER_SECTIONS,
            "designer": DESIGNER_SECTIONS,
            "photographer": PHOTOGRAPHER_SECTIONS,
        }[family]
        data.layouts = [Layout(id="default", name="Standard Layout", sections=list(sections))]
    if not data.default_structure.sections:
        data.default_structure.sections = list(data.layouts[0].sections)

    theme = data.theme_options
    if not theme.color_schemes:
        colors = DEFAULT_COLORS[family]
        theme.color_schemes = [
            ColorScheme(id="default", name="Default", colors=dict(colors)),
            ColorScheme(id="dark", name="Dark Mode", colors={
                "primary": colors["primary"],
                "secondary": colors["secondary"],
                "background": "#111827",
                "text": "#f3f4f6",
            }),
        ]
    if not theme.font_pairings:
        theme.font_pairings = [FontPairing(id="default", name="Default", fonts=dict(DEFAULT_FONTS[family]))]
    return data


class TemplateRegistry:
    def __init__(self, db: Database):
        self.db = db
        self.templates = db["templates"]
        self.portfolios = db["portfolios"]

    # ---- usage ----

    def usage_count(self, template_id: str) -> int:
        return self.portfolios.count_documents({"template_id": template_id})

    def _usage_counts(self, template_ids: List[str]) -> Dict[str, int]:
        pipeline = [
            {"$match": {"template_id": {"$in": template_ids}}},
            {"$group": {"_id": "$template_id", "count": {"$sum": 1}}},
        ]
        return {row["_id"]: row["count"] for row in self.portfolios.aggregate(pipeline)}

    def _from_doc(self, doc: dict, usage: Optional[int] = None) -> Template:
        data = to_public(doc)
        data["usage_count"] = self.usage_count(data["id"]) if usage is None else usage
        return Template.model_validate(data)

    # ---- reads ----

    def get(self, template_id: str, include_unpublished: bool = True) -> Template:
        oid = to_object_id(template_id)
        doc = self.templates.find_one({"_id": oid}) if oid else None
        if not doc or (not include_unpublished and not doc.get("is_published")):
            raise NotFound("Template not found")
        return self._from_doc(doc)

    def list(
        self,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        search: Optional[str] = None,
        sort: TemplateSort = "newest",
        page: int = 1,
        limit: int = 12,
        include_unpublished: bool = False,
    ) -> TemplatePage:
        query: dict = {}
        if not include_unpublished:
            query["is_published"] = True
        if category:
            query["category"] = category
        if featured is not None:
            query["is_featured"] = featured
        if search:
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        total = self.templates.count_documents(query)
        skip = (page - 1) * limit

        if sort == "popular":
            docs = list(self.templates.find(query))
            usage = self._usage_counts([str(d["_id"]) for d in docs])
            docs.sort(key=lambda d: usage.get(str(d["_id"]), 0), reverse=True)
            docs = docs[skip:skip + limit]
        else:
            if sort not in SORTS:
                raise ValidationError(f"Unknown sort '{sort}'")
            docs = list(self.templates.find(query).sort(SORTS[sort]).skip(skip).limit(limit))
            usage = self._usage_counts([str(d["_id"]) for d in docs])

        return TemplatePage(
            templates=[self._from_doc(d, usage.get(str(d["_id"]), 0)) for d in docs],
            total=total,
            page=page,
            pages=math.ceil(total / limit) if total else 0,
        )

    def category_stats(self) -> List[CategoryStat]:
        pipeline = [
            {"$match": {"is_published": True}},
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ]
        return [CategoryStat(category=row["_id"], count=row["count"]) for row in self.templates.aggregate(pipeline)]

    # ---- admin / creator writes ----

    def create(self, data: TemplateCreate, created_by: Optional[str] = None) -> Template:
        data = apply_defaults(data)
        doc = data.model_dump(exclude_none=True)
        doc["created_by"] = created_by
        doc["rating"] = {"average": 0.0, "count": 0}
        doc["reviews"] = []
        template_id = create_document(self.db, "templates", doc)
        logger.info("Created template %s (%s)", template_id, data.name)
        return self.get(template_id)

    def update(self, template_id: str, data: TemplateUpdate) -> Template:
        oid = to_object_id(template_id)
        fields = data.model_dump(exclude_unset=True, exclude_none=True)
        if not oid:
            raise NotFound("Template not found")
        fields["updated_at"] = utcnow()
        result = self.templates.update_one({"_id": oid}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFound("Template not found")
        return self.get(template_id)

    def delete(self, template_id: str) -> None:
        oid = to_object_id(template_id)
        if not oid or not self.templates.find_one({"_id": oid}, {"_id": 1}):
            raise NotFound("Template not found")
        in_use = self.usage_count(template_id)
        if in_use:
            raise TemplateInUse(f"Template is used by {in_use} portfolio(s) and cannot be deleted")
        self.templates.delete_one({"_id": oid})
        logger.info("Deleted template %s", template_id)

    def add_review(self, template_id: str, user_id: str, rating: int, comment: str = "") -> Template:
        """Append one review per user and recompute the rating in the same write.

        The write only lands if the review list is still the one the rating was
        computed from; otherwise it is re-read and retried.
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        oid = to_object_id(template_id)
        if not oid:
            raise NotFound("Template not found")
        review = Review(user_id=user_id, rating=rating, comment=comment.strip(), created_at=utcnow())

        for _ in range(MAX_REVIEW_ATTEMPTS):
            doc = self.templates.find_one({"_id": oid}, {"reviews": 1})
            if not doc:
                raise NotFound("Template not found")
            reviews = doc.get("reviews") or []
            if any(r.get("user_id") == user_id for r in reviews):
                raise DuplicateReview("You have already reviewed this template")
            ratings = [r["rating"] for r in reviews] + [rating]
            result = self.templates.update_one(
                {"_id": oid, "reviews": {"$size": len(reviews)}},
                {
                    "$push": {"reviews": review.model_dump()},
                    "$set": {
                        "rating": {"average": average_rating(ratings), "count": len(ratings)},
                        "updated_at": utcnow(),
                    },
                },
            )
            if result.modified_count == 1:
                return self.get(template_id)
        raise Conflict("Template reviews changed concurrently, please retry")
