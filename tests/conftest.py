import os
from pathlib import Path

import mongomock
import pytest

from assets import AssetManager
from database import ensure_indexes
from errors import StorageUnavailable
from portfolios import PortfolioService
from publication import PublicationService
from schemas import (
    ColorScheme,
    FontPairing,
    Layout,
    SectionDefinition,
    StoredObject,
    TemplateCreate,
    ThemeOptions,
)
from template_registry import TemplateRegistry
from users import UserService

OWNER = "user-owner"
OTHER = "user-other"


class FakeGateway:
    """In-memory object store that records every call."""

    def __init__(self):
        self.objects = set()
        self.uploads = []
        self.deleted = []
        self.next_ids = []
        self.fail_upload = None
        self.fail_delete = set()
        # public id -> exception raised by delete, for failures other than StorageUnavailable
        self.delete_errors = {}
        self.on_upload = None
        self._counter = 0

    def upload(self, local_path, folder, public_id=None, overwrite=False, resource_type="auto", timeout=None):
        assert os.path.exists(local_path), "upload called after the staged file was removed"
        if self.fail_upload is not None:
            raise self.fail_upload
        if public_id is None:
            if self.next_ids:
                public_id = self.next_ids.pop(0)
            else:
                self._counter += 1
                public_id = f"{folder}/img{self._counter}"
        self.uploads.append({"path": local_path, "folder": folder, "public_id": public_id, "overwrite": overwrite})
        self.objects.add(public_id)
        if self.on_upload is not None:
            self.on_upload(public_id)
        return StoredObject(url=f"https://cdn.test/{public_id}.jpg", public_id=public_id, format="jpg", width=800, height=600)

    def delete(self, public_id, resource_type="image"):
        self.deleted.append(public_id)
        if public_id in self.fail_delete:
            raise StorageUnavailable(f"delete of {public_id} failed")
        if public_id in self.delete_errors:
            raise self.delete_errors[public_id]
        self.objects.discard(public_id)
        return True


@pytest.fixture
def db():
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def assets(db, gateway):
    return AssetManager(db, gateway)


@pytest.fixture
def registry(db):
    return TemplateRegistry(db)


@pytest.fixture
def portfolios(db, assets, registry):
    return PortfolioService(db, assets, registry)


@pytest.fixture
def publication(db, portfolios, assets):
    return PublicationService(db, portfolios, assets)


@pytest.fixture
def users(db, assets):
    return UserService(db, assets)


@pytest.fixture
def staged(tmp_path: Path):
    """Factory for files as an upload handler would stage them."""
    counter = {"n": 0}

    def make(data: bytes = b"\x89PNG fake image bytes") -> str:
        counter["n"] += 1
        path = tmp_path / f"upload-{counter['n']}.png"
        path.write_bytes(data)
        return str(path)

    return make


def template_payload(**overrides) -> TemplateCreate:
    data = dict(
        name="Studio",
        description="Two-column developer template",
        category="professional",
        is_published=True,
        layouts=[
            Layout(id="classic", name="Classic", sections=["header", "about", "projects", "contact"]),
            Layout(id="grid", name="Grid", sections=["header", "projects", "skills"], grid_system="16-column"),
        ],
        theme_options=ThemeOptions(
            color_schemes=[
                ColorScheme(id="light", name="Light", colors={"primary": "#111111", "background": "#ffffff"}),
                ColorScheme(id="dark", name="Dark", colors={"primary": "#eeeeee", "background": "#111827"}),
            ],
            font_pairings=[
                FontPairing(id="inter", name="Inter", fonts={"heading": "Inter", "body": "Inter"}),
                FontPairing(id="serif", name="Serif", fonts={"heading": "Playfair Display", "body": "Lora"}),
            ],
        ),
        section_definitions={
            "about": SectionDefinition(type="about", default_data={"bio": "Tell your story"}),
            "skills": SectionDefinition(type="skills", default_data={"items": []}),
        },
    )
    data.update(overrides)
    return TemplateCreate(**data)


@pytest.fixture
def template(registry):
    return registry.create(template_payload(), created_by="admin-1")
