import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import database
from assets import AssetManager
from database import ensure_indexes, get_db
from errors import PortfolioHubError
from portfolios import PortfolioService
from publication import PublicationService
from schemas import (
    CategoryStat,
    CustomCSSChange,
    LayoutChange,
    Portfolio,
    PortfolioCreate,
    PortfolioPatch,
    ResolvedPortfolio,
    ReviewCreate,
    SectionOrderChange,
    SectionUpdate,
    StoredObject,
    Template,
    TemplateCreate,
    TemplatePage,
    TemplateSort,
    TemplateUpdate,
    ThemeChange,
)
from storage import CloudinaryGateway
from template_registry import TemplateRegistry
from users import UserService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Portfolio Hub API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortfolioHubError)
def handle_domain_error(request, exc: PortfolioHubError):
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---- Wiring ----
# Services are built per request; the only shared state lives in MongoDB and the object store.

def get_gateway() -> CloudinaryGateway:
    return CloudinaryGateway()


def get_assets(db: Database = Depends(get_db), gateway=Depends(get_gateway)) -> AssetManager:
    return AssetManager(db, gateway)


def get_templates(db: Database = Depends(get_db)) -> TemplateRegistry:
    return TemplateRegistry(db)


def get_portfolios(
    db: Database = Depends(get_db),
    assets: AssetManager = Depends(get_assets),
    templates: TemplateRegistry = Depends(get_templates),
) -> PortfolioService:
    return PortfolioService(db, assets, templates)


def get_publication(
    db: Database = Depends(get_db),
    portfolios: PortfolioService = Depends(get_portfolios),
    assets: AssetManager = Depends(get_assets),
) -> PublicationService:
    return PublicationService(db, portfolios, assets)


def get_users(db: Database = Depends(get_db), assets: AssetManager = Depends(get_assets)) -> UserService:
    return UserService(db, assets)


# Authentication happens upstream; it forwards the caller's id and role.
def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def caller_is_admin(x_user_role: Optional[str] = Header(None)) -> bool:
    return (x_user_role or "").lower() == "admin"


def require_editor(x_user_role: Optional[str] = Header(None)) -> None:
    if (x_user_role or "").lower() not in ("admin", "creator"):
        raise HTTPException(status_code=403, detail="Not authorized to manage templates")


def require_admin(is_admin: bool = Depends(caller_is_admin)) -> None:
    if not is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to delete templates")


def stage_upload(file: UploadFile) -> str:
    """Copy an incoming upload to a temporary file; the asset manager removes it."""
    suffix = os.path.splitext(file.filename or "")[1]
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix, prefix="upload-") as tmp:
        shutil.copyfileobj(file.file, tmp)
    return tmp.name


# ---- Health ----

@app.get("/")
def read_root():
    return {"message": "Portfolio Hub Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "object_storage": "✅ Configured" if CloudinaryGateway().configured else "❌ Not Configured",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = os.getenv("DATABASE_NAME") or "❌ Not Set"
            response["connection_status"] = "Connected"
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---- API: Templates ----

@app.get("/api/templates", response_model=TemplatePage)
def list_templates(
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    sort: TemplateSort = "newest",
    page: int = 1,
    limit: int = 12,
    templates: TemplateRegistry = Depends(get_templates),
):
    return templates.list(category=category, featured=featured, search=search, sort=sort, page=page, limit=limit)


@app.get("/api/templates/stats/categories", response_model=List[CategoryStat])
def template_stats(templates: TemplateRegistry = Depends(get_templates)):
    return templates.category_stats()


@app.get("/api/templates/{template_id}", response_model=Template)
def get_template(template_id: str, templates: TemplateRegistry = Depends(get_templates)):
    return templates.get(template_id, include_unpublished=False)


@app.post("/api/templates", response_model=Template, status_code=201, dependencies=[Depends(require_editor)])
def create_template(
    payload: TemplateCreate,
    user_id: str = Depends(current_user),
    templates: TemplateRegistry = Depends(get_templates),
):
    return templates.create(payload, created_by=user_id)


@app.put("/api/templates/{template_id}", response_model=Template, dependencies=[Depends(require_editor)])
def update_template(template_id: str, payload: TemplateUpdate, templates: TemplateRegistry = Depends(get_templates)):
    return templates.update(template_id, payload)


@app.delete("/api/templates/{template_id}", dependencies=[Depends(require_admin)])
def delete_template(template_id: str, templates: TemplateRegistry = Depends(get_templates)):
    templates.delete(template_id)
    return {"deleted": True}


@app.post("/api/templates/{template_id}/reviews", response_model=Template, status_code=201)
def add_review(
    template_id: str,
    payload: ReviewCreate,
    user_id: str = Depends(current_user),
    templates: TemplateRegistry = Depends(get_templates),
):
    return templates.add_review(template_id, user_id, payload.rating, payload.comment)


# ---- API: Public portfolios ----

@app.get("/api/portfolios/subdomain/{subdomain}", response_model=ResolvedPortfolio)
def public_portfolio(
    subdomain: str,
    custom_domain: Optional[str] = None,
    publication: PublicationService = Depends(get_publication),
):
    return publication.view(subdomain=subdomain, custom_domain=custom_domain)


# ---- API: Portfolio editing ----

@app.post("/api/portfolios", response_model=Portfolio, status_code=201)
def create_portfolio(
    payload: PortfolioCreate,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.create(user_id, payload)


@app.get("/api/portfolios", response_model=List[Portfolio])
def list_portfolios(user_id: str = Depends(current_user), portfolios: PortfolioService = Depends(get_portfolios)):
    return portfolios.list_for_user(user_id)


@app.get("/api/portfolios/{portfolio_id}", response_model=Portfolio)
def get_portfolio(
    portfolio_id: str,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.get(portfolio_id, user_id)


@app.get("/api/portfolios/{portfolio_id}/resolved", response_model=ResolvedPortfolio)
def resolve_portfolio(
    portfolio_id: str,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.resolve(portfolio_id, user_id)


@app.put("/api/portfolios/{portfolio_id}", response_model=Portfolio)
def update_portfolio(
    portfolio_id: str,
    patch: PortfolioPatch,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.update(portfolio_id, user_id, patch)


@app.put("/api/portfolios/{portfolio_id}/sections/{section_id}", response_model=Portfolio)
def set_section(
    portfolio_id: str,
    section_id: str,
    payload: SectionUpdate,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.set_section(portfolio_id, user_id, section_id, payload.data)


@app.put("/api/portfolios/{portfolio_id}/layout", response_model=Portfolio)
def set_layout(
    portfolio_id: str,
    payload: LayoutChange,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.set_layout(portfolio_id, user_id, payload.layout_id)


@app.put("/api/portfolios/{portfolio_id}/theme", response_model=Portfolio)
def set_theme(
    portfolio_id: str,
    payload: ThemeChange,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.set_theme(portfolio_id, user_id, payload.color_scheme_id, payload.font_pairing_id)


@app.put("/api/portfolios/{portfolio_id}/section-order", response_model=Portfolio)
def reorder_sections(
    portfolio_id: str,
    payload: SectionOrderChange,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.reorder_sections(portfolio_id, user_id, payload.section_order)


@app.put("/api/portfolios/{portfolio_id}/custom-css", response_model=Portfolio)
def set_custom_css(
    portfolio_id: str,
    payload: CustomCSSChange,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    return portfolios.set_custom_css(portfolio_id, user_id, payload.css)


@app.post("/api/portfolios/{portfolio_id}/publish", response_model=Portfolio)
def publish_portfolio(
    portfolio_id: str,
    user_id: str = Depends(current_user),
    publication: PublicationService = Depends(get_publication),
):
    return publication.publish(portfolio_id, user_id)


@app.post("/api/portfolios/{portfolio_id}/unpublish", response_model=Portfolio)
def unpublish_portfolio(
    portfolio_id: str,
    user_id: str = Depends(current_user),
    publication: PublicationService = Depends(get_publication),
):
    return publication.unpublish(portfolio_id, user_id)


@app.delete("/api/portfolios/{portfolio_id}")
def delete_portfolio(
    portfolio_id: str,
    user_id: str = Depends(current_user),
    is_admin: bool = Depends(caller_is_admin),
    publication: PublicationService = Depends(get_publication),
):
    publication.delete(portfolio_id, user_id, is_admin=is_admin)
    return {"deleted": True}


# ---- API: Images ----

@app.post("/api/portfolios/{portfolio_id}/images", response_model=StoredObject)
def upload_portfolio_image(
    portfolio_id: str,
    image_type: str = Form(...),
    file: UploadFile = File(...),
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    path = stage_upload(file)
    return portfolios.upload_image(portfolio_id, user_id, image_type, path, content_type=file.content_type)


@app.delete("/api/portfolios/{portfolio_id}/images/{image_type}/{public_id:path}")
def delete_portfolio_image(
    portfolio_id: str,
    image_type: str,
    public_id: str,
    user_id: str = Depends(current_user),
    portfolios: PortfolioService = Depends(get_portfolios),
):
    deleted = portfolios.delete_image(portfolio_id, user_id, image_type, public_id)
    return {"deleted": deleted}


@app.post("/api/users/me/profile-picture", response_model=StoredObject)
def upload_profile_picture(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user),
    users: UserService = Depends(get_users),
):
    path = stage_upload(file)
    return users.upload_profile_picture(user_id, path, content_type=file.content_type)


@app.delete("/api/users/me/profile-picture")
def delete_profile_picture(user_id: str = Depends(current_user), users: UserService = Depends(get_users)):
    return {"deleted": users.delete_profile_picture(user_id)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
