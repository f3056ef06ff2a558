"""
Portfolio composition: template defaults + portfolio overrides -> one document.

Everything here is in-memory; callers persist the result. Section content is
treated as an opaque value and never inspected.
"""

from typing import Any, Dict, List, Optional

from errors import InvalidLayoutReference, InvalidThemeReference, ValidationError
from schemas import (
    CUSTOM_CSS_KEY,
    ColorScheme,
    FontPairing,
    Portfolio,
    PortfolioPatch,
    ResolvedPortfolio,
    ResolvedSection,
    Template,
)


def template_section_ids(template: Optional[Template]) -> List[str]:
    """Every section id the template declares, in first-seen order."""
    if template is None:
        return []
    seen: Dict[str, None] = {}
    for layout in template.layouts:
        for section_id in layout.sections:
            seen.setdefault(section_id, None)
    for section_id in template.section_definitions:
        seen.setdefault(section_id, None)
    for section_id in template.default_structure.sections:
        seen.setdefault(section_id, None)
    return list(seen)


def check_layout(template: Template, layout_id: str):
    layout = template.layout(layout_id)
    if layout is None:
        raise InvalidLayoutReference(f"Layout '{layout_id}' does not exist in template '{template.name}'")
    return layout


def check_theme(template: Template, color_scheme_id: Optional[str] = None, font_pairing_id: Optional[str] = None) -> None:
    """Validate whichever theme ids are given; None means unchanged."""
    options = template.theme_options
    if color_scheme_id is not None and not any(c.id == color_scheme_id for c in options.color_schemes):
        raise InvalidThemeReference(f"Color scheme '{color_scheme_id}' does not exist in template '{template.name}'")
    if font_pairing_id is not None and not any(f.id == font_pairing_id for f in options.font_pairings):
        raise InvalidThemeReference(f"Font pairing '{font_pairing_id}' does not exist in template '{template.name}'")


def initial_selection(template: Template) -> Dict[str, str]:
    """The template's first layout, colour scheme and font pairing."""
    selection = {}
    if template.layouts:
        selection["active_layout"] = template.layouts[0].id
    if template.theme_options.color_schemes:
        selection["active_color_scheme"] = template.theme_options.color_schemes[0].id
    if template.theme_options.font_pairings:
        selection["active_font_pairing"] = template.theme_options.font_pairings[0].id
    return selection


def _dedupe(ids: List[str]) -> List[str]:
    return list(dict.fromkeys(ids))


def section_order_for(template: Optional[Template], portfolio: Portfolio) -> List[str]:
    if portfolio.section_order:
        return list(portfolio.section_order)
    if template is not None:
        layout = template.layout(portfolio.active_layout)
        if layout is not None and layout.sections:
            return list(layout.sections)
        return list(template.default_structure.sections)
    return [k for k in portfolio.content if k != CUSTOM_CSS_KEY]


def resolve_sections(template: Optional[Template], portfolio: Portfolio) -> List[ResolvedSection]:
    resolved = []
    for section_id in section_order_for(template, portfolio):
        if section_id == CUSTOM_CSS_KEY:
            continue
        if section_id in portfolio.content:
            content: Any = portfolio.content[section_id]
        elif template is not None and section_id in template.section_definitions:
            content = template.section_definitions[section_id].default_data
        else:
            content = {}
        resolved.append(ResolvedSection(section_id=section_id, content=content))
    return resolved


class PortfolioComposer:
    """Editor operations on one portfolio against its template.

    Mutations apply to `self.portfolio` in place, set `dirty`, and are
    collected by `changes()` for persisting.
    """

    def __init__(self, portfolio: Portfolio, template: Optional[Template] = None):
        self.portfolio = portfolio
        self.template = template
        self.dirty = False
        self._touched: Dict[str, Any] = {}

    def _touch(self, field: str, value: Any) -> None:
        setattr(self.portfolio, field, value)
        self._touched[field] = value
        self.dirty = True

    def _require_template(self, what: str) -> Template:
        if self.template is None:
            raise ValidationError(f"A custom portfolio has no template {what} to choose from")
        return self.template

    def resolve_sections(self) -> List[ResolvedSection]:
        return resolve_sections(self.template, self.portfolio)

    def set_section(self, section_id: str, data: Any) -> None:
        if not section_id or "." in section_id or section_id.startswith("$"):
            raise ValidationError(f"Invalid section id '{section_id}'")
        content = dict(self.portfolio.content)
        content[section_id] = data
        self._touch("content", content)

    def set_layout(self, layout_id: str) -> None:
        layout = check_layout(self._require_template("layouts"), layout_id)
        # A new grid invalidates any order chosen for the old one.
        self._touch("active_layout", layout.id)
        self._touch("section_order", list(layout.sections))

    def set_theme(self, color_scheme_id: Optional[str], font_pairing_id: Optional[str]) -> None:
        # Both ids are checked before either is applied; a None id keeps the current choice.
        check_theme(self._require_template("themes"), color_scheme_id, font_pairing_id)
        if color_scheme_id is not None:
            self._touch("active_color_scheme", color_scheme_id)
        if font_pairing_id is not None:
            self._touch("active_font_pairing", font_pairing_id)

    def reorder_sections(self, new_order: List[str]) -> None:
        # Omitting a section hides it; its content stays.
        self._touch("section_order", _dedupe([s for s in new_order if s]))

    def set_custom_css(self, css: str) -> None:
        self.set_section(CUSTOM_CSS_KEY, css)

    def custom_sections(self) -> List[str]:
        known = set(template_section_ids(self.template))
        return [s for s in section_order_for(self.template, self.portfolio) if s not in known]

    def changes(self) -> PortfolioPatch:
        return PortfolioPatch(**self._touched)

    def _color_scheme(self) -> Optional[ColorScheme]:
        if self.template is None:
            return None
        for scheme in self.template.theme_options.color_schemes:
            if scheme.id == self.portfolio.active_color_scheme:
                return scheme
        return None

    def _font_pairing(self) -> Optional[FontPairing]:
        if self.template is None:
            return None
        for pairing in self.template.theme_options.font_pairings:
            if pairing.id == self.portfolio.active_font_pairing:
                return pairing
        return None

    def resolve(self) -> ResolvedPortfolio:
        p = self.portfolio
        layout = self.template.layout(p.active_layout) if self.template else None
        css = p.content.get(CUSTOM_CSS_KEY)
        return ResolvedPortfolio(
            id=p.id,
            title=p.title,
            subtitle=p.subtitle,
            subdomain=p.subdomain,
            custom_domain=p.custom_domain,
            template_id=p.template_id,
            layout=layout.id if layout else None,
            grid_system=layout.grid_system if layout else None,
            color_scheme=self._color_scheme(),
            font_pairing=self._font_pairing(),
            sections=self.resolve_sections(),
            custom_css=css if isinstance(css, str) else "",
            section_variants=p.section_variants,
            animations_enabled=p.animations_enabled,
            style_preset=p.style_preset,
            header_image=p.header_image,
            gallery_images=p.gallery_images,
            is_published=p.is_published,
            view_count=p.view_count,
        )
