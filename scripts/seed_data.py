"""Seed permissions, the ADMIN role and an initial admin user.

The admin user's name and email can be configured via the
``INITIAL_ADMIN_NAME`` and ``INITIAL_ADMIN_EMAIL`` environment variables.
If the user already exists it is simply moved to the ``ADMIN`` role.
"""

import os
import sys
from pathlib import Path

ADMIN_ROLE = "ADMIN"


def _get_modules():
    """Import and return the models and permissions modules lazily.

    Importing at call time makes sure the engine bound to the current
    ``DATABASE_URL`` is the one seeded.
    """

    sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "docflow"))
    import models
    import permissions

    return models, permissions


def seed_permissions(session, models, permissions) -> None:
    """Ensure every known permission exists."""
    for item in permissions.PERMISSIONS:
        if not session.query(models.Permission).filter_by(name=item["name"]).first():
            session.add(models.Permission(name=item["name"], description=item["description"]))
    session.flush()


def seed_admin_role(session, models):
    """Create the ``ADMIN`` role and grant it every permission."""
    role = session.query(models.Role).filter_by(name=ADMIN_ROLE).first()
    if not role:
        role = models.Role(name=ADMIN_ROLE, description="Administrator")
        session.add(role)
    for permission in session.query(models.Permission).all():
        if permission not in role.permissions:
            role.permissions.append(permission)
    session.flush()
    return role


def seed_admin_user(session, models, role) -> None:
    name = os.getenv("INITIAL_ADMIN_NAME", "admin")
    email = os.getenv("INITIAL_ADMIN_EMAIL", f"{name}@example.com")

    admin = session.query(models.User).filter_by(email=email).first()
    if not admin:
        admin = models.User(name=name, email=email)
        session.add(admin)
    admin.role_id = role.id


def seed() -> None:
    """Create tables if needed and seed default data."""

    models, permissions = _get_modules()

    models.Base.metadata.create_all(bind=models.engine)

    session = models.SessionLocal()
    try:
        seed_permissions(session, models, permissions)
        role = seed_admin_role(session, models)
        seed_admin_user(session, models, role)
        session.commit()
    finally:
        session.close()


if __name__ == "__main__":
    seed()
