from conftest import login_as, make_user

ADDRESS = {
    "label": "Casa",
    "fullName": "Ana Gómez",
    "email": "ana@example.com",
    "phone": " ",
    "shippingAddress": "Calle 10 # 20-30",
    "shippingCity": "Medellín",
}


def test_addresses_belong_to_their_owner(client, db):
    ana = make_user(db, email="ana@example.com")
    luis = make_user(db, email="luis@example.com")

    login_as(client, ana)
    res = client.post("/api/user/addresses", json=ADDRESS)
    assert res.status_code == 201
    address = res.json()
    assert address["phone"] is None
    assert address["user_id"] == str(ana["_id"])
    assert [a["id"] for a in client.get("/api/user/addresses").json()["items"]] == [address["id"]]

    login_as(client, luis)
    assert client.get("/api/user/addresses").json()["items"] == []
    assert client.delete(f"/api/user/addresses/{address['id']}").status_code == 404

    login_as(client, ana)
    assert client.delete(f"/api/user/addresses/{address['id']}").json() == {"ok": True}
    assert db["useraddress"].count_documents({}) == 0


def test_addresses_require_session(client):
    assert client.get("/api/user/addresses").status_code == 401
    assert client.post("/api/user/addresses", json=ADDRESS).status_code == 401


def test_delete_malformed_address_id(client, db):
    login_as(client, make_user(db))
    assert client.delete("/api/user/addresses/nope").status_code == 404
