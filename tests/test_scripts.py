from app.samrambhaka.constants import ROLE_PERMISSIONS
from app.samrambhaka.db import make_engine
from app.samrambhaka.models import Base, Role, User
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.rbac import user_permission_keys
from scripts._db_utils import script_session
from scripts.init_db import seed_only


def test_seed_only_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = make_engine(db_url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "seed-password")

    seed_only(database_url=db_url)
    seed_only(database_url=db_url)

    with script_session(db_url) as s:
        assert sorted(r.key for r in s.query(Role).all()) == sorted(ROLE_PERMISSIONS)
        admins = s.query(User).filter(User.email == "root@example.com").all()
        assert len(admins) == 1
        assert [r.key for r in admins[0].roles] == ["super_admin"]
        assert s.get(Profile, admins[0].id).role == "admin"
        assert "settings.manage" in user_permission_keys(admins[0])
