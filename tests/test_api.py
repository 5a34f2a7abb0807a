"""
HTTP flows through the Flask test client.

These tests never push an app context of their own around requests, so
Flask-Login loads the user fresh for every request.
"""
import pytest


def login_admin(client, username="root", password="adminpass"):
    return client.post("/api/admin/login", json={"username": username, "password": password})


def login_salesperson(client, username, password="secret123"):
    return client.post("/api/salesperson/login", json={"username": username, "password": password})


@pytest.fixture
def admin_client(app, client):
    with app.app_context():
        app.extensions["licensing"].accounts.create_admin("root", "adminpass")
    assert login_admin(client).status_code == 200
    return client


@pytest.fixture
def catalog(admin_client):
    software = admin_client.post("/api/admin/software", json={"name": "DemoApp", "version": "1.0"})
    key_type = admin_client.post("/api/admin/key-types",
                                 json={"name": "Monthly", "hours": 720, "price": "9.99"})
    software_id = software.get_json()["data"]["id"]
    key_type_id = key_type.get_json()["data"]["id"]
    bound = admin_client.post(f"/api/admin/software/{software_id}/key-types/{key_type_id}")
    assert bound.status_code == 201
    return software_id, key_type_id


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json()["database"] == "ok"


def test_admin_routes_require_admin_session(client):
    response = client.get("/api/admin/software")
    assert response.status_code == 403
    assert response.get_json() == {"success": False, "error": "Forbidden"}


def test_admin_login_failure_reports_remaining_attempts(app, client):
    with app.app_context():
        app.extensions["licensing"].accounts.create_admin("root", "adminpass")
    response = login_admin(client, password="wrong")
    assert response.status_code == 401
    assert response.get_json()["details"] == {"remaining_attempts": 4}


def test_admin_mint_activate_and_status(admin_client, catalog):
    software_id, key_type_id = catalog
    minted = admin_client.post("/api/admin/keys/batch",
                               json={"software_id": software_id, "key_type_id": key_type_id,
                                     "count": 5})
    assert minted.status_code == 201
    keys = minted.get_json()["data"]["keys"]
    assert len(keys) == 5
    key = keys[0]

    activated = admin_client.post("/api/keys/activate", json={
        "code": key["code"], "key_code": key["key_code"], "software_id": software_id,
        "device_info": "desktop",
    })
    assert activated.status_code == 200
    body = activated.get_json()["data"]
    assert body["status"] == "used"
    assert body["expired_at"] == "2026-03-31T12:00:00+00:00"

    again = admin_client.post("/api/keys/activate", json={
        "code": key["code"], "key_code": key["key_code"], "software_id": software_id,
    })
    assert again.status_code == 409
    assert again.get_json()["success"] is False

    status = admin_client.get(f"/api/keys/status?code={key['code']}")
    assert status.get_json()["data"][0]["is_valid"] is True


def test_activate_errors_map_to_status_codes(admin_client, catalog):
    software_id, key_type_id = catalog
    key = admin_client.post("/api/admin/keys/batch", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 1,
    }).get_json()["data"]["keys"][0]

    assert admin_client.post("/api/keys/activate", json={}).status_code == 400
    assert admin_client.post("/api/keys/activate", data="not json").status_code == 400
    assert admin_client.post("/api/keys/activate", json={
        "code": "missing", "key_code": "missing", "software_id": software_id,
    }).status_code == 404
    assert admin_client.post("/api/keys/activate", json={
        "code": key["code"], "key_code": key["key_code"], "software_id": software_id + 100,
    }).status_code == 409
    assert admin_client.get("/api/keys/status").status_code == 400


def test_non_string_and_non_finite_fields_are_bad_requests(app, admin_client, catalog):
    software_id, _ = catalog
    activation = admin_client.post("/api/keys/activate", json={
        "code": 123, "key_code": "x", "software_id": software_id,
    })
    assert activation.status_code == 400
    assert activation.get_json() == {"success": False, "error": "code must be a string"}

    for price in ("NaN", "Infinity"):
        response = admin_client.post("/api/admin/key-types",
                                     json={"name": "Broken", "hours": 1, "price": price})
        assert response.status_code == 400
    assert admin_client.post("/api/admin/software", json={"name": 7}).status_code == 400

    with app.app_context():
        app.extensions["licensing"].accounts.create_salesperson("carol", "secret123")
    seller = app.test_client()
    assert login_salesperson(seller, "carol", 12345678).status_code == 400
    assert login_salesperson(seller, "carol").status_code == 200
    accept = seller.post("/api/agent/invitations/accept", json={"invite_code": ["ABCD1234"]})
    assert accept.status_code == 400


def test_mint_count_out_of_range(admin_client, catalog):
    software_id, key_type_id = catalog
    response = admin_client.post("/api/admin/keys/batch", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 1001,
    })
    assert response.status_code == 400


def test_mint_unbound_pair_is_forbidden(admin_client, catalog):
    software_id, _ = catalog
    other = admin_client.post("/api/admin/key-types",
                              json={"name": "Trial", "hours": 24, "price": 0}).get_json()["data"]
    response = admin_client.post("/api/admin/keys/batch", json={
        "software_id": software_id, "key_type_id": other["id"], "count": 1,
    })
    assert response.status_code == 403


def test_key_list_void_and_export(admin_client, catalog):
    software_id, key_type_id = catalog
    admin_client.post("/api/admin/keys/batch", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 3,
    })

    listing = admin_client.get("/api/admin/keys?page=1&page_size=2").get_json()["data"]
    assert listing["total"] == 3
    assert listing["pages"] == 2
    assert len(listing["list"]) == 2

    key_id = listing["list"][0]["id"]
    assert admin_client.post(f"/api/admin/keys/{key_id}/void").status_code == 200
    assert admin_client.post(f"/api/admin/keys/{key_id}/void").status_code == 409

    voided = admin_client.get("/api/admin/keys?status=void").get_json()["data"]
    assert [k["id"] for k in voided["list"]] == [key_id]
    assert admin_client.get("/api/admin/keys?status=bogus").status_code == 400

    export = admin_client.get("/api/admin/keys/export?format=csv")
    assert export.mimetype == "text/csv"
    assert "attachment" in export.headers["Content-Disposition"]
    assert export.get_data(as_text=True).count("\n") == 4
    assert admin_client.get("/api/admin/keys/export?format=xml").status_code == 400


def test_delete_key_type_with_keys_is_unprocessable(admin_client, catalog):
    software_id, key_type_id = catalog
    admin_client.post("/api/admin/keys/batch", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 1,
    })
    response = admin_client.delete(f"/api/admin/key-types/{key_type_id}")
    assert response.status_code == 422


def test_salesperson_endpoints_require_login(client):
    assert client.get("/api/salesperson/products").status_code == 401
    assert client.get("/api/agent/hierarchy").status_code == 401


def test_salesperson_flow(app, admin_client, catalog):
    software_id, key_type_id = catalog
    created = admin_client.post("/api/admin/salespersons", json={
        "username": "seller", "password": "secret123", "commission_rate": "0.2",
    })
    assert created.status_code == 201
    seller_id = created.get_json()["data"]["id"]
    assigned = admin_client.post(f"/api/admin/salespersons/{seller_id}/products", json={
        "software_id": software_id, "key_type_id": key_type_id, "key_gen_limit": 5,
    })
    assert assigned.status_code == 201

    seller = app.test_client()
    assert login_salesperson(seller, "seller").status_code == 200
    assert seller.get("/api/salesperson/me").get_json()["data"]["username"] == "seller"
    assert len(seller.get("/api/salesperson/products").get_json()["data"]) == 1

    generated = seller.post("/api/salesperson/keys/generate", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 4,
        "customer_name": "Acme",
    })
    assert generated.status_code == 201
    body = generated.get_json()["data"]
    assert len(body["keys"]) == 4
    assert body["sale"]["sale_amount"] == pytest.approx(39.96)
    assert body["agent_commissions"] == []

    over = seller.post("/api/salesperson/keys/generate", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 2,
    })
    assert over.status_code == 403

    keys = seller.get("/api/salesperson/keys").get_json()["data"]
    assert keys["total"] == 4
    sales = seller.get("/api/salesperson/sales").get_json()["data"]
    assert sales["total"] == 1
    stats = seller.get("/api/salesperson/commission").get_json()["data"]
    assert stats["total_commission"] == pytest.approx(7.992)

    assert seller.post("/api/salesperson/logout").status_code == 200
    assert seller.get("/api/salesperson/me").status_code == 401


def test_salesperson_cannot_read_foreign_key(app, admin_client, catalog):
    software_id, key_type_id = catalog
    with app.app_context():
        services = app.extensions["licensing"]
        owner = services.accounts.create_salesperson("owner", "secret123")
        services.accounts.create_salesperson("other", "secret123")
        services.catalog.assign_product(owner.id, software_id, key_type_id)
        result = services.sales.generate_keys(owner.id, software_id, key_type_id, 1)
        key_id = result.keys[0].id

    other = app.test_client()
    login_salesperson(other, "other")
    assert other.get(f"/api/salesperson/keys/{key_id}").status_code == 403


def test_salesperson_login_lockout(app, client):
    with app.app_context():
        app.extensions["licensing"].accounts.create_salesperson("alice", "secret123")
    for _ in range(4):
        assert login_salesperson(client, "alice", "bad").status_code == 401
    locked = login_salesperson(client, "alice", "bad")
    assert locked.status_code == 429
    assert locked.get_json()["details"]["remaining_minutes"] == 15
    assert login_salesperson(client, "alice").status_code == 429


def test_invitation_flow_and_cascade(app, admin_client, catalog):
    software_id, key_type_id = catalog
    with app.app_context():
        services = app.extensions["licensing"]
        services.accounts.create_salesperson("upline", "secret123")
        downline = services.accounts.create_salesperson("downline", "secret123",
                                                        commission_rate="0.2")
        services.catalog.assign_product(downline.id, software_id, key_type_id)

    upline = app.test_client()
    login_salesperson(upline, "upline")
    invited = upline.post("/api/agent/invitations", json={"email": "down@example.com"})
    assert invited.status_code == 201
    invite_code = invited.get_json()["data"]["invite_code"]
    assert upline.post("/api/agent/invitations",
                       json={"email": "down@example.com"}).status_code == 409

    down = app.test_client()
    login_salesperson(down, "downline")
    accepted = down.post("/api/agent/invitations/accept", json={"invite_code": invite_code})
    assert accepted.status_code == 200
    assert accepted.get_json()["data"]["level"] == 1

    cycle = down.post("/api/agent/invitations", json={"phone": "0700000001"})
    cycle_code = cycle.get_json()["data"]["invite_code"]
    assert upline.post("/api/agent/invitations/accept",
                       json={"invite_code": cycle_code}).status_code == 422

    hierarchy = upline.get("/api/agent/hierarchy").get_json()["data"]
    assert hierarchy["children_count"] == 1
    assert [child["level"] for child in hierarchy["children"]] == [1]

    down.post("/api/salesperson/keys/generate", json={
        "software_id": software_id, "key_type_id": key_type_id, "count": 10,
    })
    commissions = upline.get("/api/agent/commissions").get_json()["data"]
    assert commissions["total_commission"] == pytest.approx(9.99)
    assert commissions["by_status"]["pending"] == pytest.approx(9.99)

    with app.app_context():
        upline_id = app.extensions["licensing"].accounts.list_salespersons(keyword="upline").items[0].id
    settled = admin_client.post(f"/api/admin/agents/{upline_id}/settle", json={"notes": "batch 1"})
    assert settled.status_code == 201
    assert settled.get_json()["data"]["commission_count"] == 1
    assert admin_client.post(f"/api/admin/agents/{upline_id}/settle").status_code == 409
    assert len(upline.get("/api/agent/settlements").get_json()["data"]) == 1


def test_agent_code_is_stable(app, client):
    with app.app_context():
        app.extensions["licensing"].accounts.create_salesperson("alice", "secret123")
    login_salesperson(client, "alice")
    first = client.post("/api/agent/code").get_json()["data"]["agent_code"]
    second = client.post("/api/agent/code").get_json()["data"]["agent_code"]
    assert first == second
    assert len(first) == 6


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.get_json()["success"] is False
