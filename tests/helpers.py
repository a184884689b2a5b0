"""Helpers shared by the test modules and conftest."""

from insighthub.core.security import hash_password
from insighthub.models.user import Organization, User

PASSWORD = "password123"


def make_org(db, name="Acme", slug="acme"):
    """An organization with one owner, one admin and one member, all using ``PASSWORD``."""
    org = Organization(name=name, slug=slug)
    db.add(org)
    db.flush()
    users = {}
    for role in ("owner", "admin", "member"):
        user = User(email=f"{role}@{slug}.io", name=f"{role.title()} {name}", role=role,
                    hashed_password=hash_password(PASSWORD), organization_id=org.id)
        db.add(user)
        users[role] = user
    db.commit()
    return {"org": org, **users}


def login(client, email, password=PASSWORD) -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
