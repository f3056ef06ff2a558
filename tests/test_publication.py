import pytest

from errors import DuplicateSubdomain, Forbidden, NotFound, ValidationError
from schemas import PortfolioCreate, PortfolioPatch

from conftest import OTHER, OWNER


@pytest.fixture
def draft(portfolios, template):
    return portfolios.create(OWNER, PortfolioCreate(title="Jane Doe", subdomain="jane-doe", template_id=template.id))


def test_publish_requires_title(portfolios, publication):
    untitled = portfolios.create(OWNER, PortfolioCreate(subdomain="jane-doe"))
    with pytest.raises(ValidationError):
        publication.publish(untitled.id, OWNER)

    portfolios.update(untitled.id, OWNER, PortfolioPatch(title="Jane"))
    assert publication.publish(untitled.id, OWNER).is_published


def test_only_owner_publishes(publication, draft):
    with pytest.raises(Forbidden):
        publication.publish(draft.id, OTHER)


def test_unpublish_then_publish_keeps_subdomain(portfolios, publication, draft):
    publication.publish(draft.id, OWNER)
    unpublished = publication.unpublish(draft.id, OWNER)
    assert not unpublished.is_published
    assert unpublished.subdomain == "jane-doe"

    # Still reserved while in draft.
    with pytest.raises(DuplicateSubdomain):
        portfolios.create(OTHER, PortfolioCreate(title="Imposter", subdomain="jane-doe"))

    republished = publication.publish(draft.id, OWNER)
    assert republished.is_published
    assert republished.subdomain == "jane-doe"


def test_publish_twice_is_idempotent(publication, draft):
    publication.publish(draft.id, OWNER)
    assert publication.publish(draft.id, OWNER).is_published


def test_public_view_requires_published_and_counts(portfolios, publication, draft):
    with pytest.raises(NotFound):
        publication.view(subdomain="jane-doe")
    assert portfolios.get(draft.id, OWNER).view_count == 0

    publication.publish(draft.id, OWNER)
    publication.view(subdomain="jane-doe")
    resolved = publication.view(subdomain="Jane-Doe")

    assert resolved.view_count == 2
    assert resolved.title == "Jane Doe"
    assert [s.section_id for s in resolved.sections] == ["header", "about", "projects", "contact"]
    assert resolved.sections[1].content == {"bio": "Tell your story"}

    publication.unpublish(draft.id, OWNER)
    with pytest.raises(NotFound):
        publication.view(subdomain="jane-doe")
    assert portfolios.get(draft.id, OWNER).view_count == 2


def test_public_view_by_custom_domain(portfolios, publication, draft):
    portfolios.update(draft.id, OWNER, PortfolioPatch(custom_domain="janedoe.dev"))
    publication.publish(draft.id, OWNER)
    resolved = publication.view(subdomain="unknown-sub", custom_domain="JaneDoe.dev")
    assert resolved.subdomain == "jane-doe"
    assert resolved.custom_domain == "janedoe.dev"


def test_get_by_subdomain(portfolios, publication, draft):
    with pytest.raises(NotFound):
        portfolios.get_by_subdomain("jane-doe")
    assert portfolios.get_by_subdomain("jane-doe", require_published=False).id == draft.id


def test_delete_cascades_images_best_effort(db, portfolios, publication, gateway, staged, draft):
    gateway.next_ids = ["h1", "g1", "g2"]
    portfolios.upload_image(draft.id, OWNER, "header", staged())
    portfolios.upload_image(draft.id, OWNER, "gallery", staged())
    portfolios.upload_image(draft.id, OWNER, "gallery", staged())
    gateway.fail_delete.add("g2")

    publication.delete(draft.id, OWNER)

    assert sorted(gateway.deleted) == ["g1", "g2", "h1"]
    assert db["portfolios"].count_documents({}) == 0


def test_delete_by_admin_or_owner_only(publication, draft):
    with pytest.raises(Forbidden):
        publication.delete(draft.id, OTHER)
    publication.delete(draft.id, OTHER, is_admin=True)
    with pytest.raises(NotFound):
        publication.delete(draft.id, OWNER)


def test_scenario_end_to_end(db, portfolios, publication, gateway, staged):
    jane = portfolios.create(OWNER, PortfolioCreate(subdomain="jane-doe"))
    with pytest.raises(ValidationError):
        publication.publish(jane.id, OWNER)
    portfolios.update(jane.id, OWNER, PortfolioPatch(title="Jane Doe"))
    publication.publish(jane.id, OWNER)

    gateway.next_ids = ["p1", "p2", "g1", "g2"]
    portfolios.upload_image(jane.id, OWNER, "header", staged())
    portfolios.upload_image(jane.id, OWNER, "header", staged())
    assert portfolios.get(jane.id, OWNER).header_image.public_id == "p2"
    assert gateway.deleted == ["p1"]

    with pytest.raises(DuplicateSubdomain):
        portfolios.create(OTHER, PortfolioCreate(title="Jane Two", subdomain="jane-doe"))

    portfolios.upload_image(jane.id, OWNER, "gallery", staged())
    portfolios.upload_image(jane.id, OWNER, "gallery", staged())
    gateway.fail_delete.add("g2")
    publication.delete(jane.id, OWNER)

    assert gateway.deleted.count("g1") == 1
    assert gateway.deleted.count("g2") == 1
    assert db["portfolios"].find_one({"subdomain": "jane-doe"}) is None


def test_delete_removes_document_when_gateway_raises_unexpectedly(db, portfolios, publication, gateway, staged, draft):
    gateway.next_ids = ["g1", "g2"]
    portfolios.upload_image(draft.id, OWNER, "gallery", staged())
    portfolios.upload_image(draft.id, OWNER, "gallery", staged())
    gateway.delete_errors["g1"] = ConnectionResetError("socket closed")

    publication.delete(draft.id, OWNER)

    assert gateway.deleted == ["g1", "g2"]
    assert gateway.objects == {"g1"}
    assert db["portfolios"].count_documents({}) == 0
