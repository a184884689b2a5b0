"""Tests for the bootstrap owner and tenant slug allocation."""

from insighthub.core.config import settings
from insighthub.core.security import verify_password
from insighthub.models.user import Organization, User
from insighthub.seed_admin import seed_admin
from insighthub.services.organizations import slugify, unique_slug


class TestSeedAdmin:
    def test_creates_owner_once(self, db):
        first = seed_admin(db)
        second = seed_admin(db)
        assert first.id == second.id
        assert first.role == "owner"
        assert verify_password(settings.ADMIN_PASSWORD, first.hashed_password)
        assert db.query(User).count() == 1
        assert db.query(Organization).one().name == settings.ADMIN_ORG


class TestSlugs:
    def test_slugify(self):
        assert slugify("Acme, Inc.") == "acme-inc"
        assert slugify("  ") == "org"

    def test_unique_slug(self, db, org):
        assert unique_slug(db, "Acme") == "acme-2"
        db.add(Organization(name="Acme 2", slug="acme-2"))
        db.commit()
        assert unique_slug(db, "ACME") == "acme-3"
        assert unique_slug(db, "Initech") == "initech"
