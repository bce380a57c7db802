"""
Tests: quotation HTTP API and app-level guards.
"""


def _hdr(user):
    return {"X-User-Id": str(user.id)}


class TestQuotationEndpoints:
    def test_create(self, client, make_user, make_customer, make_product):
        rep = make_user(role="sales_rep")
        customer = make_customer()
        product = make_product(base_price=200)

        res = client.post("/api/v1/quotations", headers=_hdr(rep), json={
            "customer_id": customer.id,
            "items": [{"product_id": product.id, "quantity": 5}],
            "notes": "first offer",
        })

        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "DRAFT"
        assert body["subtotal"] == 1000.0
        assert body["total_amount"] == 1180.0
        assert body["created_by_user_id"] == rep.id

    def test_create_requires_customer(self, client):
        res = client.post("/api/v1/quotations", json={"items": []})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_unknown_customer(self, client):
        res = client.post("/api/v1/quotations", json={"customer_id": 4040, "items": []})
        assert res.status_code == 404

    def test_create_inactive_product(self, client, make_customer, make_product):
        product = make_product(is_active=False)
        res = client.post("/api/v1/quotations", json={
            "customer_id": make_customer().id,
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        assert res.status_code == 422

    def test_list(self, client, make_quotation):
        make_quotation(status="SENT")
        make_quotation(status="DRAFT")
        body = client.get("/api/v1/quotations?status=SENT").get_json()
        assert body["total"] == 1
        assert "items" not in body["items"][0]

    def test_list_pagination_is_clamped(self, client, make_quotation):
        make_quotation()
        body = client.get("/api/v1/quotations?limit=100000&offset=-3").get_json()
        assert body["limit"] == 500
        assert body["offset"] == 0

    def test_get(self, client, make_quotation):
        q = make_quotation()
        res = client.get(f"/api/v1/quotations/{q.id}")
        assert res.status_code == 200
        assert len(res.get_json()["items"]) == 1

    def test_illegal_transition(self, client, make_quotation):
        q = make_quotation(status="DRAFT")
        res = client.put(f"/api/v1/quotations/{q.id}", json={"status": "APPROVED"})
        assert res.status_code == 422
        body = res.get_json()
        assert "DRAFT" in body["error"] and "APPROVED" in body["error"]
        assert body["details"]["reason"] == "ILLEGAL_TRANSITION"

    def test_legal_transition(self, client, make_quotation):
        q = make_quotation(status="DRAFT")
        res = client.put(f"/api/v1/quotations/{q.id}", json={"status": "SENT"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "SENT"

    def test_non_string_status(self, client, make_quotation):
        q = make_quotation(status="DRAFT")
        res = client.put(f"/api/v1/quotations/{q.id}", json={"status": ["SENT"]})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_BUSINESS_RULE"

    def test_delete_draft(self, client, make_quotation):
        q = make_quotation()
        assert client.delete(f"/api/v1/quotations/{q.id}").status_code == 204
        assert client.get(f"/api/v1/quotations/{q.id}").status_code == 404

    def test_delete_sent(self, client, make_quotation):
        q = make_quotation(status="SENT")
        assert client.delete(f"/api/v1/quotations/{q.id}").status_code == 422

    def test_duplicate(self, client, make_quotation):
        q = make_quotation(status="SENT")
        res = client.post(f"/api/v1/quotations/{q.id}/duplicate", json={})
        assert res.status_code == 201
        assert res.get_json()["status"] == "DRAFT"


class TestAppGuards:
    def test_non_json_body_rejected(self, client):
        res = client.post("/api/v1/quotations", data="customer_id=1",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415

    def test_plain_text_body_rejected(self, client):
        res = client.post("/api/v1/quotations", data="{}", content_type="text/plain")
        assert res.status_code == 415

    def test_empty_post_passes_guard(self, client, make_quotation):
        q = make_quotation()
        res = client.post(f"/api/v1/quotations/{q.id}/duplicate")
        assert res.status_code == 201

    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"

    def test_readiness(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200

    def test_timing_headers(self, client):
        res = client.get("/api/v1/health")
        assert "X-Request-Duration-Ms" in res.headers
        assert "X-Request-ID" in res.headers

    def test_unknown_route(self, client):
        assert client.get("/api/v1/nope").status_code == 404
