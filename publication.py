"""
Draft/published lifecycle of a portfolio.

    Draft --publish--> Published --unpublish--> Draft

Unpublishing keeps the subdomain reserved to the portfolio, so publishing
again never has to re-claim it. Public reads only see published portfolios
and each one bumps the view counter.
"""

import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from assets import AssetManager
from composition import PortfolioComposer
from database import to_object_id, utcnow
from errors import Forbidden, NotFound, ValidationError
from portfolios import COLLECTION, SUBDOMAIN_RE, PortfolioService, duplicate_error
from schemas import Portfolio, ResolvedPortfolio

logger = logging.getLogger(__name__)


class PublicationService:
    def __init__(self, db: Database, portfolios: PortfolioService, assets: AssetManager):
        self.collection = db[COLLECTION]
        self.portfolios = portfolios
        self.assets = assets

    def _set_published(self, portfolio_id: str, user_id: str, published: bool) -> Portfolio:
        oid, doc = self.portfolios.owned(portfolio_id, user_id)
        query = {"_id": oid}
        if published:
            if not (doc.get("title") or "").strip():
                raise ValidationError("A title is required before publishing")
            subdomain = doc.get("subdomain") or ""
            if not SUBDOMAIN_RE.match(subdomain):
                raise ValidationError("A valid subdomain is required before publishing")
            # Only flip the flag while the portfolio still holds the subdomain it was checked with.
            query["subdomain"] = subdomain
        try:
            updated = self.collection.find_one_and_update(
                query,
                {"$set": {"is_published": published, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise duplicate_error(e) from e
        if not updated:
            raise NotFound("Portfolio changed while publishing, please retry")
        logger.info("Portfolio %s %s", portfolio_id, "published" if published else "unpublished")
        return PortfolioService.from_doc(updated)

    def publish(self, portfolio_id: str, user_id: str) -> Portfolio:
        return self._set_published(portfolio_id, user_id, True)

    def unpublish(self, portfolio_id: str, user_id: str) -> Portfolio:
        return self._set_published(portfolio_id, user_id, False)

    def view(self, subdomain: Optional[str] = None, custom_domain: Optional[str] = None) -> ResolvedPortfolio:
        """Public read: resolve a published portfolio and count the view."""
        doc = None
        update = {"$inc": {"view_count": 1}}
        if custom_domain:
            doc = self.collection.find_one_and_update(
                {"custom_domain": custom_domain.strip().lower(), "is_published": True},
                update,
                return_document=ReturnDocument.AFTER,
            )
        if doc is None and subdomain:
            doc = self.collection.find_one_and_update(
                {"subdomain": subdomain.strip().lower(), "is_published": True},
                update,
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFound("Portfolio not found")
        portfolio = PortfolioService.from_doc(doc)
        return PortfolioComposer(portfolio, self.portfolios.template_for(portfolio)).resolve()

    def delete(self, portfolio_id: str, user_id: str, is_admin: bool = False) -> None:
        """Remove a portfolio from either state, deleting its stored images first.

        Image deletions are best-effort; the document is removed regardless.
        """
        oid = to_object_id(portfolio_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("Portfolio not found")
        if doc.get("user_id") != user_id and not is_admin:
            raise Forbidden("Not authorized to delete this portfolio")

        portfolio = PortfolioService.from_doc(doc)
        public_ids = [img.public_id for img in portfolio.gallery_images]
        if portfolio.header_image:
            public_ids.insert(0, portfolio.header_image.public_id)
        failed = self.assets.discard(public_ids)
        if failed:
            logger.warning("Portfolio %s deleted with %d stored image(s) left behind: %s",
                           portfolio_id, len(failed), ", ".join(failed))

        self.collection.delete_one({"_id": oid})
        logger.info("Deleted portfolio %s", portfolio_id)
