"""
Database Schemas for Portfolio Hub

Each Pydantic model below either mirrors a MongoDB collection
(Template -> "templates", Portfolio -> "portfolios", User -> "users")
or is a request/response body used by the API.
Documents are stored with the same snake_case field names.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

TemplateCategory = Literal[
    "professional", "creative", "minimal", "modern", "other",
    "developer", "designer", "photographer",
]

TemplateSort = Literal["newest", "rating", "popular", "name"]

# Reserved content key holding the portfolio's custom stylesheet.
CUSTOM_CSS_KEY = "customCSS"


# ---- Stored assets ----

class ImageRef(BaseModel):
    url: str
    public_id: str


class StoredObject(BaseModel):
    """What the object store reports back after an upload."""
    url: str
    public_id: str
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def as_ref(self) -> ImageRef:
        return ImageRef(url=self.url, public_id=self.public_id)


# ---- Templates ----

class Layout(BaseModel):
    id: str
    name: str = ""
    sections: List[str] = Field(default_factory=list)
    grid_system: str = "12-column"
    spacing: Dict[str, Any] = Field(default_factory=dict)


class ColorScheme(BaseModel):
    id: str
    name: str = ""
    colors: Dict[str, str] = Field(default_factory=dict)


class FontPairing(BaseModel):
    id: str
    name: str = ""
    fonts: Dict[str, str] = Field(default_factory=dict)


class ThemeOptions(BaseModel):
    color_schemes: List[ColorScheme] = Field(default_factory=list)
    font_pairings: List[FontPairing] = Field(default_factory=list)
    spacing: Dict[str, Any] = Field(default_factory=dict)


class SectionDefinition(BaseModel):
    type: str = ""
    allowed_components: List[str] = Field(default_factory=list)
    default_data: Dict[str, Any] = Field(default_factory=dict)
    variants: List[str] = Field(default_factory=list)


class DefaultStructure(BaseModel):
    model_config = ConfigDict(extra="allow")

    sections: List[str] = Field(default_factory=list)


class Review(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: Optional[datetime] = None


class Rating(BaseModel):
    average: float = 0.0
    count: int = 0


class Template(BaseModel):
    """
    Templates collection schema
    Collection name: "templates"
    """
    id: Optional[str] = None
    name: str = Field(..., max_length=100)
    description: str = Field("", max_length=500)
    category: TemplateCategory = "other"
    preview_image: Optional[str] = None
    default_structure: DefaultStructure = Field(default_factory=DefaultStructure)
    layouts: List[Layout] = Field(default_factory=list)
    theme_options: ThemeOptions = Field(default_factory=ThemeOptions)
    section_definitions: Dict[str, SectionDefinition] = Field(default_factory=dict)
    is_published: bool = False
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    rating: Rating = Field(default_factory=Rating)
    reviews: List[Review] = Field(default_factory=list)
    # Derived from the portfolios collection on every read, never stored.
    usage_count: int = 0

    def layout(self, layout_id: Optional[str]) -> Optional[Layout]:
        for layout in self.layouts:
            if layout.id == layout_id:
                return layout
        return None


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    category: TemplateCategory = "other"
    preview_image: Optional[str] = None
    default_structure: DefaultStructure = Field(default_factory=DefaultStructure)
    layouts: List[Layout] = Field(default_factory=list)
    theme_options: ThemeOptions = Field(default_factory=ThemeOptions)
    section_definitions: Dict[str, SectionDefinition] = Field(default_factory=dict)
    is_published: bool = False
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[TemplateCategory] = None
    preview_image: Optional[str] = None
    default_structure: Optional[DefaultStructure] = None
    layouts: Optional[List[Layout]] = None
    theme_options: Optional[ThemeOptions] = None
    section_definitions: Optional[Dict[str, SectionDefinition]] = None
    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None
    tags: Optional[List[str]] = None


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class TemplatePage(BaseModel):
    templates: List[Template]
    total: int
    page: int
    pages: int


class CategoryStat(BaseModel):
    category: str
    count: int


# ---- Portfolios ----

class Portfolio(BaseModel):
    """
    Portfolios collection schema
    Collection name: "portfolios"
    """
    id: Optional[str] = None
    user_id: str
    template_id: Optional[str] = None
    title: str = ""
    subtitle: Optional[str] = None
    subdomain: str = Field(..., description="Public address, e.g. jane-doe.portfoliohub.site")
    custom_domain: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    section_order: List[str] = Field(default_factory=list)
    active_layout: str = "default"
    active_color_scheme: str = "default"
    active_font_pairing: str = "default"
    section_variants: Dict[str, str] = Field(default_factory=dict)
    animations_enabled: bool = True
    style_preset: str = "modern"
    header_image: Optional[ImageRef] = None
    gallery_images: List[ImageRef] = Field(default_factory=list)
    is_published: bool = False
    view_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PortfolioCreate(BaseModel):
    title: str = Field("", max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    subdomain: str
    template_id: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    section_order: List[str] = Field(default_factory=list)
    active_layout: str = "default"
    active_color_scheme: str = "default"
    active_font_pairing: str = "default"
    custom_domain: Optional[str] = None


class PortfolioPatch(BaseModel):
    """Sparse update: only fields present in `model_fields_set` are applied.

    An explicit None clears the field (and, for image slots, deletes the
    stored object); an omitted field is left unchanged.
    """
    title: Optional[str] = Field(None, max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    content: Optional[Dict[str, Any]] = None
    section_order: Optional[List[str]] = None
    active_layout: Optional[str] = None
    active_color_scheme: Optional[str] = None
    active_font_pairing: Optional[str] = None
    section_variants: Optional[Dict[str, str]] = None
    animations_enabled: Optional[bool] = None
    style_preset: Optional[str] = None
    header_image: Optional[ImageRef] = None
    gallery_images: Optional[List[ImageRef]] = None

    def provided(self) -> Dict[str, Any]:
        """Explicitly provided fields, None values included."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class SectionUpdate(BaseModel):
    data: Any


class LayoutChange(BaseModel):
    layout_id: str


class ThemeChange(BaseModel):
    color_scheme_id: str
    font_pairing_id: str


class SectionOrderChange(BaseModel):
    section_order: List[str]


class CustomCSSChange(BaseModel):
    css: str


class ResolvedSection(BaseModel):
    section_id: str
    content: Any


class ResolvedPortfolio(BaseModel):
    id: Optional[str] = None
    title: str
    subtitle: Optional[str] = None
    subdomain: str
    custom_domain: Optional[str] = None
    template_id: Optional[str] = None
    layout: Optional[str] = None
    grid_system: Optional[str] = None
    color_scheme: Optional[ColorScheme] = None
    font_pairing: Optional[FontPairing] = None
    sections: List[ResolvedSection] = Field(default_factory=list)
    custom_css: str = ""
    section_variants: Dict[str, str] = Field(default_factory=dict)
    animations_enabled: bool = True
    style_preset: str = "modern"
    header_image: Optional[ImageRef] = None
    gallery_images: List[ImageRef] = Field(default_factory=list)
    is_published: bool = False
    view_count: int = 0


# ---- Users ----

class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    id: Optional[str] = None
    name: str
    email: EmailStr
    username: str = Field(..., description="Unique handle")
    role: Literal["user", "admin", "creator"] = "user"
    profile_picture: Optional[ImageRef] = None

    @property
    def profile_picture_id(self) -> Optional[str]:
        return self.profile_picture.public_id if self.profile_picture else None
