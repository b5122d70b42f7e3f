"""
Referral intake, attribution and the admin review/payment flow.
"""
from datetime import datetime
from decimal import Decimal

from config import settings
from models import AffiliateStatus, RateType, Referral
from tests.conftest import auth_headers, message_body, subjects

PAYMENT_DONE = "Commission payment processed"

INDIVIDUAL = {"account_type": "individual", "first_name": "Rick", "last_name": "Ref", "email": "rick@example.com"}
COMPANY = {"account_type": "company", "company_name": "Acme", "contact_first_name": "Cara", "contact_email": "cara@acme.com"}


def from_link(client, slug=None, body=None):
    params = {"afl": slug} if slug else {}
    return client.post("/referral/from-link", params=params, json=body or INDIVIDUAL)


# =============================================================================
# INTAKE
# =============================================================================


class TestIntake:

    def test_from_link_creates_pending_unpaid(self, client, make_affiliate, outbox):
        affiliate = make_affiliate().affiliate
        resp = from_link(client, "janedoe")
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["affiliate_id"] == affiliate.id
        assert body["status"] == "pending"
        assert body["payment_status"] == "unpaid"
        assert body["payment_date"] is None

        assert subjects(outbox) == ["New referral submission"]
        assert "managers@example.com" in outbox[0]["To"]
        assert "Rick Ref" in message_body(outbox[0])

    def test_company_referral(self, client, make_affiliate):
        make_affiliate()
        resp = from_link(client, "janedoe", COMPANY)
        assert resp.status_code == 201
        assert resp.json()["company_name"] == "Acme"

    def test_variant_fields_are_required(self, client, make_affiliate):
        make_affiliate()
        assert from_link(client, "janedoe", {"account_type": "company"}).status_code == 422
        assert from_link(client, "janedoe", {"account_type": "individual", "first_name": "Rick"}).status_code == 422

    def test_unknown_fields_are_rejected(self, client, make_affiliate):
        make_affiliate()
        resp = from_link(client, "janedoe", {**INDIVIDUAL, "status": "approved"})
        assert resp.status_code == 422

    def test_inactive_affiliate_creates_nothing(self, client, db, make_affiliate, outbox):
        make_affiliate(status=AffiliateStatus.disabled)
        resp = from_link(client, "janedoe")
        assert resp.status_code == 400
        assert resp.json()["kind"] == "AffiliateNotActive"
        assert db.query(Referral).count() == 0
        assert outbox == []

    def test_unknown_slug(self, client):
        resp = from_link(client, "nobody")
        assert resp.status_code == 404
        assert resp.json()["kind"] == "NotFound"

    def test_soft_deleted_affiliate_is_unknown(self, client, db, make_affiliate):
        user = make_affiliate()
        user.affiliate.deleted_at = datetime.utcnow()
        db.commit()
        assert from_link(client, "janedoe").status_code == 404

    def test_manual_referral_is_attributed_to_caller(self, client, make_affiliate):
        user = make_affiliate()
        resp = client.post("/referral/manual", json=INDIVIDUAL, headers=auth_headers(user))
        assert resp.status_code == 201
        assert resp.json()["affiliate_id"] == user.affiliate.id

    def test_admin_referral_names_affiliate(self, client, make_affiliate, admin_headers):
        affiliate_id = make_affiliate().affiliate.id
        resp = client.post("/referral/admin", json={**INDIVIDUAL, "affiliate_id": affiliate_id}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["affiliate_id"] == affiliate_id

    def test_admin_referral_for_pending_affiliate(self, client, make_affiliate, admin_headers):
        affiliate_id = make_affiliate(status=AffiliateStatus.pending).affiliate.id
        resp = client.post("/referral/admin", json={**INDIVIDUAL, "affiliate_id": affiliate_id}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["kind"] == "AffiliateNotActive"


# =============================================================================
# ATTRIBUTION
# =============================================================================


class TestAttribution:

    def test_query_parameter_wins_over_cookie(self, client, make_affiliate):
        jane = make_affiliate()
        make_affiliate(email="bob@example.com", first_name="Bob", last_name="Smith")
        client.get("/referral/track", params={"afl": "bobsmith"})

        resp = from_link(client, "janedoe")
        assert resp.json()["affiliate_id"] == jane.affiliate.id

    def test_cookie_used_without_query_parameter(self, client, make_affiliate):
        bob = make_affiliate(email="bob@example.com", first_name="Bob", last_name="Smith")
        client.get("/referral/track", params={"afl": "bobsmith"})
        assert client.cookies.get(settings.attribution_cookie_name) == "bobsmith"
        resp = from_link(client)
        assert resp.status_code == 201
        assert resp.json()["affiliate_id"] == bob.affiliate.id

    def test_same_name_slugs_resolve_to_their_own_affiliate(self, client, make_affiliate):
        first = make_affiliate()
        second = make_affiliate(email="jane2@example.com")
        assert (first.affiliate.slug, second.affiliate.slug) == ("janedoe", "janedoe1")

        assert from_link(client, "janedoe").json()["affiliate_id"] == first.affiliate.id
        assert from_link(client, "janedoe1").json()["affiliate_id"] == second.affiliate.id

    def test_missing_attribution(self, client):
        resp = from_link(client)
        assert resp.status_code == 400
        assert resp.json()["kind"] == "MissingAttribution"

    def test_track_sets_cookie_for_active_affiliate(self, client, make_affiliate):
        make_affiliate()
        resp = client.get("/referral/track", params={"afl": "janedoe"})
        assert resp.json() == {"tracked": True}
        assert resp.cookies.get(settings.attribution_cookie_name) == "janedoe"
        assert "Max-Age=2592000" in resp.headers["set-cookie"]

    def test_track_ignores_inactive_affiliate(self, client, make_affiliate):
        make_affiliate(status=AffiliateStatus.pending)
        resp = client.get("/referral/track", params={"afl": "janedoe"})
        assert resp.json() == {"tracked": False}
        assert "set-cookie" not in resp.headers


# =============================================================================
# REVIEW AND PAYMENT
# =============================================================================


class TestReview:

    def _referral(self, client, make_affiliate, db, rate_type=RateType.fixed, rate_value="150.00"):
        user = make_affiliate()
        user.affiliate.rate_type = rate_type
        user.affiliate.rate_value = Decimal(rate_value)
        db.commit()
        return from_link(client, "janedoe").json()["id"]

    def test_payment_date_is_stamped_once(self, client, db, make_affiliate, admin_headers):
        referral_id = self._referral(client, make_affiliate, db)
        url = f"/referral/{referral_id}"

        paid = client.put(url, json={"payment_status": "paid"}, headers=admin_headers).json()
        assert paid["payment_date"] is not None

        unpaid = client.put(url, json={"payment_status": "unpaid"}, headers=admin_headers).json()
        assert unpaid["payment_date"] == paid["payment_date"]

        again = client.put(url, json={"payment_status": "paid"}, headers=admin_headers).json()
        assert again["payment_date"] == paid["payment_date"]

    def test_payment_email_on_each_unpaid_to_paid_edge(self, client, db, make_affiliate, admin_headers, outbox):
        referral_id = self._referral(client, make_affiliate, db)
        url = f"/referral/{referral_id}"

        client.put(url, json={"payment_status": "paid"}, headers=admin_headers)
        client.put(url, json={"status": "approved"}, headers=admin_headers)
        client.put(url, json={"payment_status": "unpaid"}, headers=admin_headers)
        client.put(url, json={"payment_status": "paid"}, headers=admin_headers)

        payments = [m for m in outbox if m["Subject"] == PAYMENT_DONE]
        assert len(payments) == 2
        assert "jane@example.com" in payments[0]["To"]
        assert "150" in message_body(payments[0])
        assert "USD" in message_body(payments[0])

    def test_percentage_commission_reports_zero(self, client, db, make_affiliate, admin_headers, outbox):
        referral_id = self._referral(client, make_affiliate, db, rate_type=RateType.percentage, rate_value="10")
        client.put(f"/referral/{referral_id}", json={"payment_status": "paid"}, headers=admin_headers)
        payment = next(m for m in outbox if m["Subject"] == PAYMENT_DONE)
        assert "0 USD" in message_body(payment)

    def test_rejected_payment_sends_nothing(self, client, db, make_affiliate, admin_headers, outbox):
        referral_id = self._referral(client, make_affiliate, db)
        resp = client.put(f"/referral/{referral_id}", json={"payment_status": "rejected"}, headers=admin_headers)
        assert resp.json()["payment_date"] is None
        assert PAYMENT_DONE not in subjects(outbox)

    def test_payment_date_is_not_editable(self, client, db, make_affiliate, admin_headers):
        referral_id = self._referral(client, make_affiliate, db)
        resp = client.put(
            f"/referral/{referral_id}",
            json={"payment_date": "2020-01-01T00:00:00"},
            headers=admin_headers,
        )
        assert resp.status_code == 422

    def test_affiliate_cannot_update(self, client, db, make_affiliate):
        referral_id = self._referral(client, make_affiliate, db)
        headers = auth_headers(db.get(Referral, referral_id).affiliate.user)
        resp = client.put(f"/referral/{referral_id}", json={"status": "approved"}, headers=headers)
        assert resp.status_code == 403

    def test_soft_delete(self, client, db, make_affiliate, admin_headers):
        referral_id = self._referral(client, make_affiliate, db)
        assert client.delete(f"/referral/{referral_id}", headers=admin_headers).status_code == 204
        assert client.get(f"/referral/{referral_id}", headers=admin_headers).status_code == 404
        assert client.get("/referral", headers=admin_headers).json() == []

        db.expire_all()
        assert db.get(Referral, referral_id).deleted_at is not None


# =============================================================================
# VISIBILITY
# =============================================================================


class TestVisibility:

    def test_affiliates_only_see_their_own(self, client, make_affiliate, support_headers):
        jane = make_affiliate()
        bob = make_affiliate(email="bob@example.com", first_name="Bob", last_name="Smith")
        jane_referral = from_link(client, "janedoe").json()["id"]
        bob_referral = from_link(client, "bobsmith").json()["id"]

        mine = client.get("/referral", headers=auth_headers(jane)).json()
        assert [r["id"] for r in mine] == [jane_referral]

        hidden = client.get(f"/referral/{bob_referral}", headers=auth_headers(jane))
        assert hidden.status_code == 404

        everything = client.get("/referral", headers=support_headers).json()
        assert {r["id"] for r in everything} == {jane_referral, bob_referral}

        filtered = client.get("/referral", params={"affiliate_id": bob.affiliate.id}, headers=support_headers).json()
        assert [r["id"] for r in filtered] == [bob_referral]

    def test_status_filter(self, client, make_affiliate, admin_headers):
        make_affiliate()
        first = from_link(client, "janedoe").json()["id"]
        from_link(client, "janedoe")
        client.put(f"/referral/{first}", json={"status": "approved"}, headers=admin_headers)

        approved = client.get("/referral", params={"status": "approved"}, headers=admin_headers).json()
        assert [r["id"] for r in approved] == [first]

    def test_list_requires_login(self, client):
        assert client.get("/referral").status_code == 401
