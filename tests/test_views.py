from datetime import date, timedelta
from io import BytesIO

from openpyxl import load_workbook

from canteen import db
from canteen.models import Selection, User
from canteen.utils import MAX_INT
from tests.conftest import ADMIN_SECRET, login

DAY = "2025-01-10"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


# ----- registration & login -----
def test_register_then_login(client):
    response = client.post(
        "/register",
        json={"username": "neha", "password": "pw1", "role": "staff"},
    )
    assert response.get_json() == {"success": True}

    response = login(client, "neha", "pw1", "staff")
    body = response.get_json()
    assert body["success"] is True
    assert body["user"]["username"] == "neha"
    assert body["user"]["role"] == "staff"


def test_register_accepts_form_data(client):
    response = client.post(
        "/register",
        data={"username": "ravi", "password": "pw", "role": "student"},
    )
    assert response.get_json()["success"] is True


def test_register_rejects_bad_input(client):
    response = client.post("/register", json={"username": "x"})
    assert response.status_code == 400
    assert response.get_json() == {"success": False, "msg": "missing fields"}

    response = client.post(
        "/register",
        json={"username": "x", "password": "y", "role": "admin"},
    )
    assert response.get_json() == {"success": False, "msg": "invalid role"}


def test_register_duplicate_username(client):
    response = client.post(
        "/register",
        json={"username": "student1", "password": "other", "role": "student"},
    )
    assert response.status_code == 409
    assert response.get_json() == {"success": False, "msg": "user exists"}


def test_login_requires_exact_match(client):
    assert login(client, password="wrong").status_code == 401
    assert login(client, role="staff").status_code == 401
    assert login(client, username="Student1").status_code == 401
    assert client.post("/login", json={"username": "student1"}).status_code == 400
    assert client.get("/api/me").get_json() == {"user": None}


def test_login_rejects_non_string_fields(client):
    response = client.post(
        "/login",
        json={
            "username": ["student1"],
            "password": "stud1123",
            "role": "student",
        },
    )
    assert response.status_code == 400
    assert response.get_json() == {"success": False}

    response = client.post(
        "/login",
        json={"username": "student1", "password": 1234, "role": "student"},
    )
    assert response.status_code == 400
    assert client.get("/api/me").get_json() == {"user": None}


def test_me_and_logout(student_client):
    me = student_client.get("/api/me").get_json()["user"]
    assert me["username"] == "student1"
    assert me["role"] == "student"
    assert "password" not in me

    assert student_client.post("/logout").get_json() == {"ok": True}
    assert student_client.get("/api/me").get_json() == {"user": None}


def test_hashed_passwords_mode(make_app):
    app = make_app(HASH_PASSWORDS=True)
    client = app.test_client()
    client.post(
        "/register",
        json={"username": "meera", "password": "s3cret", "role": "student"},
    )
    with app.app_context():
        stored = User.query.filter_by(username="meera").one().password
        seeded = User.query.filter_by(username="student1").one().password
    assert stored != "s3cret"
    assert stored.startswith("$2")
    assert seeded.startswith("$2")

    assert login(client, "meera", "s3cret").get_json()["success"] is True
    assert login(client, "student1", "stud1123").get_json()["success"] is True
    assert login(client, "meera", "wrong").status_code == 401


# ----- menu -----
def test_menu_grouped_by_meal_with_image_fallback(app, client):
    images = app.static_folder + "/images"
    open(images + "/poha.jpg", "wb").close()

    menu = client.get("/api/menu").get_json()["menu"]
    assert set(menu) == {"breakfast", "lunch", "dinner"}
    assert all(len(items) == 10 for items in menu.values())

    by_name = {item["name"]: item for item in menu["breakfast"]}
    assert by_name["Poha"]["img"] == "/images/poha.jpg"
    assert by_name["Tea"]["img"] == "/images/cart.png"


# ----- selections -----
def test_select_requires_login(app, client, ids):
    response = client.post(
        "/api/select",
        json={"menu_item_id": ids["items"]["Poha"], "date": DAY, "quantity": 3},
    )
    assert response.status_code == 401
    assert response.get_json() == {"error": "login required"}
    with app.app_context():
        assert Selection.query.count() == 0


def test_change_and_listing_require_login(client, ids):
    response = client.post(
        "/api/change", json={"menu_item_id": ids["items"]["Poha"], "delta": 1}
    )
    assert response.status_code == 401
    assert client.get("/api/my-selections").status_code == 401


def test_select_then_change_scenario(student_client, ids):
    poha = ids["items"]["Poha"]
    response = student_client.post(
        "/api/select", json={"menu_item_id": poha, "date": DAY, "quantity": 3}
    )
    assert response.get_json() == {"ok": True, "quantity": 3}

    listing = student_client.get(f"/api/my-selections?date={DAY}").get_json()
    assert len(listing["selections"]) == 1
    row = listing["selections"][0]
    assert row["name"] == "Poha"
    assert row["quantity"] == 3
    assert row["menu_item_id"] == poha

    response = student_client.post(
        "/api/change", json={"menu_item_id": poha, "date": DAY, "delta": -5}
    )
    assert response.get_json() == {"ok": True, "quantity": 0}

    listing = student_client.get(f"/api/my-selections?date={DAY}").get_json()
    assert listing == {"selections": []}


def test_select_coerces_quantity(student_client, ids):
    poha = str(ids["items"]["Poha"])
    response = student_client.post(
        "/api/select",
        data={"menu_item_id": poha, "date": DAY, "quantity": "2.7"},
    )
    assert response.get_json() == {"ok": True, "quantity": 2}

    response = student_client.post(
        "/api/select",
        data={"menu_item_id": poha, "date": DAY, "quantity": "lots"},
    )
    assert response.get_json() == {"ok": True, "quantity": 0}

    response = student_client.post(
        "/api/change", json={"menu_item_id": poha, "date": DAY}
    )
    assert response.get_json() == {"ok": True, "quantity": 0}


def test_huge_quantities_stay_bounded_integers(app, student_client, ids):
    poha = ids["items"]["Poha"]
    response = student_client.post(
        "/api/select",
        json={
            "menu_item_id": poha,
            "date": DAY,
            "quantity": "99999999999999999999",
        },
    )
    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "quantity": MAX_INT}

    response = student_client.post(
        "/api/change", json={"menu_item_id": poha, "date": DAY, "delta": 1}
    )
    assert response.get_json() == {"ok": True, "quantity": MAX_INT}

    response = student_client.post(
        "/api/change",
        json={"menu_item_id": poha, "date": DAY, "delta": -(2**70)},
    )
    assert response.get_json() == {"ok": True, "quantity": 0}
    with app.app_context():
        assert Selection.query.count() == 0


def test_select_defaults_to_tomorrow(app, student_client, ids):
    tea = ids["items"]["Tea"]
    response = student_client.post(
        "/api/change", json={"menu_item_id": tea, "delta": 2}
    )
    assert response.get_json()["quantity"] == 2

    listing = student_client.get("/api/my-selections").get_json()["selections"]
    assert [(s["name"], s["quantity"]) for s in listing] == [("Tea", 2)]

    tomorrow = date.today() + timedelta(days=1)
    with app.app_context():
        row = Selection.query.one()
        assert row.selected_for_date == tomorrow


def test_select_validation_errors(app, student_client, ids):
    response = student_client.post("/api/select", json={"quantity": 1})
    assert response.status_code == 400
    assert response.get_json() == {"error": "menu_item_id required"}

    response = student_client.post(
        "/api/select", json={"menu_item_id": "abc", "quantity": 1}
    )
    assert response.status_code == 400

    response = student_client.post(
        "/api/select", json={"menu_item_id": 9999, "quantity": 1}
    )
    assert response.status_code == 404

    response = student_client.post(
        "/api/select",
        json={"menu_item_id": "99999999999999999999", "quantity": 1},
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "invalid menu_item_id"}

    response = student_client.post(
        "/api/change",
        json={"menu_item_id": ids["items"]["Poha"], "date": "soon", "delta": 1},
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "invalid date"}

    assert student_client.get("/api/my-selections?date=nope").status_code == 400
    with app.app_context():
        assert Selection.query.count() == 0


def test_selections_are_private_to_the_caller(app, client, ids):
    poha = ids["items"]["Poha"]
    login(client)
    client.post(
        "/api/select", json={"menu_item_id": poha, "date": DAY, "quantity": 3}
    )
    client.post("/logout")

    login(client, "staff1", "staff1123", "staff")
    listing = client.get(f"/api/my-selections?date={DAY}").get_json()
    assert listing == {"selections": []}
    client.post(
        "/api/select", json={"menu_item_id": poha, "date": DAY, "quantity": 1}
    )
    with app.app_context():
        assert Selection.query.count() == 2


def test_persistence_failure_returns_generic_error(
    app, student_client, ids, monkeypatch
):
    from sqlalchemy.exc import OperationalError
    from canteen.services import SelectionService

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(SelectionService, "set_quantity", broken)
    response = student_client.post(
        "/api/select",
        json={"menu_item_id": ids["items"]["Poha"], "date": DAY, "quantity": 1},
    )
    assert response.status_code == 500
    assert response.get_json() == {"error": "server error"}


# ----- admin -----
def test_admin_endpoints_require_admin(student_client):
    for path in (
        "/api/admin/totals",
        "/api/admin/userwise",
        "/api/admin/export-totals",
    ):
        response = student_client.get(path)
        assert response.status_code == 401
        assert response.get_json() == {"error": "admin required"}


def test_admin_login_wrong_secret(client):
    response = client.post("/api/admin/login", json={"password": "admin"})
    assert response.status_code == 403
    assert response.get_json() == {"ok": False}
    assert client.get("/api/admin/totals").status_code == 401


def test_admin_secret_is_independent_of_user(client):
    # no user logged in at all
    response = client.post("/api/admin/login", json={"password": ADMIN_SECRET})
    assert response.get_json() == {"ok": True}
    assert client.get("/api/admin/totals").status_code == 200

    # a student who knows the secret gets admin rights too
    login(client)
    assert client.get("/api/admin/userwise").status_code == 200


def test_logout_drops_admin(admin_client):
    admin_client.post("/logout")
    assert admin_client.get("/api/admin/totals").status_code == 401


def test_admin_totals_empty_date(admin_client):
    body = admin_client.get("/api/admin/totals?date=2030-06-01").get_json()
    assert body["date"] == "2030-06-01"
    assert len(body["totals"]) == 30
    assert {row["total"] for row in body["totals"]} == {0}
    assert set(body["totals"][0]) == {
        "menu_item_id",
        "name",
        "meal",
        "img",
        "total",
    }


def test_admin_totals_and_userwise(app, client, ids):
    poha = ids["items"]["Poha"]
    login(client)
    client.post(
        "/api/select", json={"menu_item_id": poha, "date": DAY, "quantity": 3}
    )
    client.post("/logout")
    login(client, "student2", "stud2123")
    client.post(
        "/api/change", json={"menu_item_id": poha, "date": DAY, "delta": 2}
    )
    client.post("/api/admin/login", json={"password": ADMIN_SECRET})

    totals = client.get(f"/api/admin/totals?date={DAY}").get_json()["totals"]
    assert {r["name"]: r["total"] for r in totals}["Poha"] == 5

    rows = client.get(f"/api/admin/userwise?date={DAY}").get_json()["rows"]
    assert [(r["username"], r["item"], r["quantity"]) for r in rows] == [
        ("student1", "Poha", 3),
        ("student2", "Poha", 2),
    ]
    assert client.get("/api/admin/totals?date=bad").status_code == 400


def test_export_totals_csv(app, admin_client, ids):
    with app.app_context():
        from canteen.services import SelectionService

        SelectionService.set_quantity(
            ids["users"]["student1"], ids["items"]["Paneer Curry"], date(2025, 1, 10), 4
        )
        db.session.remove()

    response = admin_client.get(f"/api/admin/export-totals?date={DAY}")
    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "totals_2025-01-10.csv" in response.headers["Content-Disposition"]

    lines = response.get_data(as_text=True).splitlines()
    assert lines[0] == "item,meal,total"
    assert len(lines) == 31
    assert "Paneer Curry,lunch,4" in lines


def test_export_totals_xlsx(admin_client):
    response = admin_client.get(
        f"/api/admin/export-totals?date={DAY}&format=xlsx"
    )
    assert response.status_code == 200
    assert "totals_2025-01-10.xlsx" in response.headers["Content-Disposition"]

    ws = load_workbook(BytesIO(response.data)).active
    assert [c.value for c in ws[1]] == ["item", "meal", "total"]
    assert ws.max_row == 32
    assert ws.cell(row=32, column=1).value == "TOTAL"
    assert ws.cell(row=32, column=3).value == "=SUM(C2:C31)"


def test_export_rejects_unknown_format(admin_client):
    response = admin_client.get("/api/admin/export-totals?format=pdf")
    assert response.status_code == 400


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert "error" in response.get_json()
