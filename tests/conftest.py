import pytest

from canteen import create_app, db
from canteen.models import MenuItem, User
from canteen.seed import seed_defaults

ADMIN_SECRET = "letmein"


@pytest.fixture
def make_app(tmp_path):
    """Factory for apps bound to a fresh SQLite file in tmp_path."""
    created = []

    def _make(**overrides):
        name = f"canteen_{len(created)}.db"
        config = {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / name}",
            "ADMIN_PASSWORD": ADMIN_SECRET,
            "HASH_PASSWORDS": False,
        }
        config.update(overrides)
        app = create_app(config)
        static_root = tmp_path / "static"
        (static_root / "images").mkdir(parents=True, exist_ok=True)
        app.static_folder = str(static_root)
        with app.app_context():
            db.create_all()
            seed_defaults()
        created.append(app)
        return app

    yield _make

    for app in created:
        with app.app_context():
            db.session.remove()
            db.engine.dispose()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username="student1", password="stud1123", role="student"):
    return client.post(
        "/login",
        json={"username": username, "password": password, "role": role},
    )


@pytest.fixture
def student_client(client):
    response = login(client)
    assert response.get_json()["success"] is True
    return client


@pytest.fixture
def admin_client(client):
    response = client.post("/api/admin/login", json={"password": ADMIN_SECRET})
    assert response.status_code == 200
    return client


@pytest.fixture
def ids(app):
    """Handy ids of seeded users and menu items."""
    with app.app_context():
        users = {u.username: u.id for u in User.query.all()}
        items = {m.name: m.id for m in MenuItem.query.all()}
    return {"users": users, "items": items}
