import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.senexus.bindings import install_system_modules
from app.senexus.models import Firm, FirmRole, Holding, User, UserFirm
from app.senexus.registry import sync_manifests


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed(s: Session, *, admin_email: str, admin_password: str, holding_name: str, firm_slug: str, firm_name: str) -> User:
    """
    Idempotent bootstrap: module catalog, one holding, one firm, and an OWNER.
    An existing admin keeps their password.
    """
    sync_manifests(s)

    holding = s.execute(select(Holding).where(Holding.name == holding_name)).scalar_one_or_none()
    if holding is None:
        holding = Holding(name=holding_name)
        s.add(holding)
        s.flush()

    firm = s.execute(select(Firm).where(Firm.slug == firm_slug)).scalar_one_or_none()
    if firm is None:
        firm = Firm(slug=firm_slug, name=firm_name, holding_id=holding.id, theme_color="default")
        s.add(firm)
        s.flush()

    user = s.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    if user is None:
        user = User(email=admin_email, name="Administrateur", password_hash=generate_password_hash(admin_password), is_active=True)
        s.add(user)
        s.flush()

    membership = s.execute(
        select(UserFirm).where(UserFirm.user_id == user.id, UserFirm.firm_id == firm.id)
    ).scalar_one_or_none()
    if membership is None:
        s.add(UserFirm(user_id=user.id, firm_id=firm.id, role=FirmRole.OWNER.value))
    install_system_modules(s, firm, user)
    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@senexus.sn").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///senexus.db").strip()

    # Direct engine/session so this can run in release without building the Flask app.
    with _session_scope(db_url) as s:
        seed(
            s,
            admin_email=admin_email,
            admin_password=admin_password,
            holding_name=(os.environ.get("SEED_HOLDING_NAME") or "Senexus Holding").strip(),
            firm_slug=(os.environ.get("SEED_FIRM_SLUG") or "senexus").strip().lower(),
            firm_name=(os.environ.get("SEED_FIRM_NAME") or "Senexus").strip(),
        )

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
