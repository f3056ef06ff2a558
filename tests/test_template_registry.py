import pytest

from errors import DuplicateReview, NotFound, TemplateInUse, ValidationError
from schemas import PortfolioCreate, TemplateCreate, TemplateUpdate
from template_registry import average_rating

from conftest import OWNER, template_payload


def test_create_applies_default_layout_and_theme(registry):
    created = registry.create(TemplateCreate(name="Lens", category="photographer"))
    assert [l.id for l in created.layouts] == ["default"]
    assert created.layouts[0].sections[-1] == "contact"
    assert "pricing" in created.layouts[0].sections
    assert [c.id for c in created.theme_options.color_schemes] == ["default", "dark"]
    assert created.theme_options.font_pairings[0].fonts["heading"] == "Playfair Display"
    assert created.default_structure.sections == created.layouts[0].sections
    assert created.rating.count == 0


def test_create_keeps_given_layouts(template):
    assert [l.id for l in template.layouts] == ["classic", "grid"]
    assert template.created_by == "admin-1"


def test_get_unknown_or_malformed_id(registry):
    with pytest.raises(NotFound):
        registry.get("not-an-id")
    with pytest.raises(NotFound):
        registry.get("64b7f0c2a1b2c3d4e5f60718")


def test_get_hides_unpublished_from_public_reads(registry):
    draft = registry.create(template_payload(name="Draft", is_published=False))
    with pytest.raises(NotFound):
        registry.get(draft.id, include_unpublished=False)
    assert registry.get(draft.id).name == "Draft"


def test_reviews_recompute_rating(registry, template):
    registry.add_review(template.id, "u1", 5, "Great")
    registry.add_review(template.id, "u2", 4)
    updated = registry.add_review(template.id, "u3", 4)
    assert updated.rating.count == 3
    assert updated.rating.average == 4.3
    assert len(updated.reviews) == 3


def test_one_review_per_user(registry, template):
    registry.add_review(template.id, "u1", 3)
    with pytest.raises(DuplicateReview):
        registry.add_review(template.id, "u1", 5)
    assert registry.get(template.id).rating.average == 3.0


def test_review_rating_bounds(registry, template):
    with pytest.raises(ValidationError):
        registry.add_review(template.id, "u1", 6)


def test_usage_count_is_derived_from_portfolios(registry, portfolios, template):
    assert registry.get(template.id).usage_count == 0
    portfolios.create(OWNER, PortfolioCreate(title="A", subdomain="alpha", template_id=template.id))
    portfolios.create(OWNER, PortfolioCreate(title="B", subdomain="bravo", template_id=template.id))
    assert registry.get(template.id).usage_count == 2


def test_delete_blocked_while_referenced(registry, portfolios, publication, template):
    p = portfolios.create(OWNER, PortfolioCreate(title="A", subdomain="alpha", template_id=template.id))
    with pytest.raises(TemplateInUse):
        registry.delete(template.id)

    publication.delete(p.id, OWNER)
    registry.delete(template.id)
    with pytest.raises(NotFound):
        registry.get(template.id)


def test_list_filters_and_paginates(registry):
    registry.create(template_payload(name="Mono", category="minimal"))
    registry.create(template_payload(name="Canvas", category="creative", is_featured=True))
    registry.create(template_payload(name="Hidden", category="creative", is_published=False))
    registry.create(template_payload(name="Gallery Pro", category="creative"))

    creative = registry.list(category="creative")
    assert {t.name for t in creative.templates} == {"Canvas", "Gallery Pro"}

    assert [t.name for t in registry.list(featured=True).templates] == ["Canvas"]
    assert [t.name for t in registry.list(search="gallery").templates] == ["Gallery Pro"]

    page = registry.list(sort="name", page=2, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert [t.name for t in page.templates] == ["Mono"]


def test_list_sorted_by_rating_and_popularity(registry, portfolios):
    low = registry.create(template_payload(name="Low"))
    high = registry.create(template_payload(name="High"))
    registry.add_review(low.id, "u1", 2)
    registry.add_review(high.id, "u1", 5)
    portfolios.create(OWNER, PortfolioCreate(title="A", subdomain="alpha", template_id=low.id))

    assert [t.name for t in registry.list(sort="rating").templates] == ["High", "Low"]
    popular = registry.list(sort="popular").templates
    assert [t.name for t in popular] == ["Low", "High"]
    assert popular[0].usage_count == 1


def test_list_rejects_unknown_sort(registry):
    with pytest.raises(ValidationError):
        registry.list(sort="random")


def test_update_and_category_stats(registry, template):
    updated = registry.update(template.id, TemplateUpdate(name="Studio 2", is_featured=True))
    assert updated.name == "Studio 2"
    assert updated.is_featured
    assert updated.layouts == template.layouts

    registry.create(template_payload(name="Other", category="modern"))
    stats = {s.category: s.count for s in registry.category_stats()}
    assert stats == {"professional": 1, "modern": 1}


def test_review_average_rounds_halves_up(registry, template):
    for user, rating in [("u1", 4), ("u2", 4), ("u3", 5)]:
        registry.add_review(template.id, user, rating)
    updated = registry.add_review(template.id, "u4", 4)
    assert updated.rating.average == 4.3
    assert updated.rating.count == 4


@pytest.mark.parametrize("ratings,expected", [([4, 5], 4.5), ([1, 2, 2, 2], 1.8), ([3, 3, 3, 4], 3.3), ([5], 5.0)])
def test_average_rating(ratings, expected):
    assert average_rating(ratings) == expected
