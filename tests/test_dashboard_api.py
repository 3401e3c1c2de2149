from supportbot.services.lead_service import LeadStore, PersistLeadParams

from conftest import seed_tenant


def onboard(client, name="Acme Corp", email="owner@acme.io", password="s3cret-pass"):
    return client.post(
        "/tenants",
        json={
            "name": name,
            "admin_email": email,
            "admin_password": password,
            "widget_domains": ["WWW.Acme.io ", "acme.io"],
        },
    )


def login(client, email="owner@acme.io", password="s3cret-pass"):
    return client.post("/login", data={"username": email, "password": password})


def auth_headers(client, **kwargs):
    token = login(client, **kwargs).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def seed_lead(api, tenant_id, email):
    async def _seed():
        async with api.factory() as db:
            result = await LeadStore.persist_lead_if_any(
                db,
                PersistLeadParams(
                    tenant_id=tenant_id,
                    source_bot_id=tenant_id,
                    first_message=f"Contact me at {email}",
                    email=email,
                ),
            )
            await db.commit()
            return result.id

    return api.portal.call(_seed)


# ── Onboarding and auth ───────────────────────────────────────────────────────

def test_onboarding_then_login(api):
    created = onboard(api.client)
    assert created.status_code == 201
    tenant = created.json()
    assert tenant["widget_domains"] == ["acme.io", "www.acme.io"]

    assert onboard(api.client).status_code == 409

    response = login(api.client)
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["tenant_id"] == tenant["id"]
    assert body["user"]["role"] == "admin"

    me = api.client.get("/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["email"] == "owner@acme.io"


def test_wrong_password_is_rejected(api):
    onboard(api.client)
    response = login(api.client, password="wrong-password")
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_dashboard_requires_a_token(api):
    for path in ("/leads", "/knowledge", "/subscription/status", "/me"):
        response = api.client.get(path)
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"


# ── Subscription ──────────────────────────────────────────────────────────────

def test_new_tenant_is_trial_eligible(api):
    onboard(api.client)
    body = api.client.get("/subscription/status", headers=auth_headers(api.client)).json()
    assert body["status"] == "eligible"
    assert body["tier"] == "free"
    assert body["has_access"] is True
    assert body["features"] == []
    assert body["summary"]


# ── Knowledge ─────────────────────────────────────────────────────────────────

def test_knowledge_lifecycle(api):
    onboard(api.client)
    headers = auth_headers(api.client)

    created = api.client.post(
        "/knowledge",
        json={"title": "Refunds", "content": "Refunds are processed within five business days."},
        headers=headers,
    )
    assert created.status_code == 201
    document = created.json()
    assert document["word_count"] == 7

    listed = api.client.get("/knowledge", headers=headers).json()
    assert [d["id"] for d in listed] == [document["id"]]

    replaced = api.client.put(
        f"/knowledge/{document['id']}",
        json={"content": "Refunds take three days."},
        headers=headers,
    )
    assert replaced.status_code == 200
    assert replaced.json()["word_count"] == 4

    assert api.client.delete(f"/knowledge/{document['id']}", headers=headers).status_code == 204
    assert api.client.get("/knowledge", headers=headers).json() == []


def test_second_upload_on_free_tier_hits_quota(api):
    onboard(api.client)
    headers = auth_headers(api.client)
    payload = {"title": "Doc", "content": "one two three"}
    assert api.client.post("/knowledge", json=payload, headers=headers).status_code == 201

    response = api.client.post("/knowledge", json=payload, headers=headers)
    assert response.status_code == 429
    assert response.json()["code"] == "UPLOAD_QUOTA_EXCEEDED"


# ── Leads ─────────────────────────────────────────────────────────────────────

def test_leads_are_listed_and_updated_for_own_tenant_only(api):
    created = onboard(api.client).json()
    headers = auth_headers(api.client)
    other = seed_tenant(api, "Globex")

    own_id = seed_lead(api, created["id"], "buyer@shop.io")
    foreign_id = seed_lead(api, other.tenant_id, "spy@globex.io")

    listing = api.client.get("/leads", headers=headers).json()
    assert listing["total"] == 1
    assert listing["items"][0]["email"] == "buyer@shop.io"
    assert listing["items"][0]["status"] == "new"

    assert api.client.get(f"/leads/{foreign_id}", headers=headers).status_code == 404

    patched = api.client.patch(
        f"/leads/{own_id}", json={"status": "contacted", "notes": "Called Tuesday"}, headers=headers
    )
    assert patched.status_code == 200
    assert patched.json()["status"] == "contacted"

    filtered = api.client.get("/leads", params={"status": "contacted"}, headers=headers).json()
    assert filtered["total"] == 1

    bad = api.client.patch(f"/leads/{own_id}", json={"status": "won"}, headers=headers)
    assert bad.status_code == 400

    assert api.client.delete(f"/leads/{own_id}", headers=headers).status_code == 204
    assert api.client.get("/leads", headers=headers).json()["total"] == 0
