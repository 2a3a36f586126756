import pytest

pytestmark = pytest.mark.django_db

URL = "/api/v1/orders/"


def _create(api_client, headers, encounter, item, order_type="LAB", **extra):
    payload = {"encounter": str(encounter.id), "order_type": order_type, "service_item": str(item.id)}
    return api_client.post(URL, payload, format="json", **headers, **extra)


def test_create_lab_order_returns_gate_state(api_client, headers, encounter, cbc_item):
    r = _create(api_client, headers, encounter, cbc_item)

    assert r.status_code == 201, r.data
    assert r.data["payment_status"] == "PENDING"
    assert r.data["can_fulfill"] is False
    assert r.data["allowed_actions"] == ["cancel"]


def test_create_order_requires_scope_headers(api_client, encounter, cbc_item):
    r = api_client.post(
        URL, {"encounter": str(encounter.id), "order_type": "LAB", "service_item": str(cbc_item.id)}, format="json"
    )
    assert r.status_code == 400


def test_create_order_idempotent_double_post(api_client, headers, encounter, cbc_item):
    from hm_ledger.orders.models import Order

    h = dict(headers, HTTP_IDEMPOTENCY_KEY="order-001")
    r1 = _create(api_client, h, encounter, cbc_item)
    r2 = _create(api_client, h, encounter, cbc_item)

    assert r1.status_code == r2.status_code == 201
    assert r1.data["id"] == r2.data["id"]
    assert Order.objects.count() == 1


def test_start_unpaid_order_is_402_payment_required(api_client, headers, encounter, cbc_item):
    order_id = _create(api_client, headers, encounter, cbc_item).data["id"]

    r = api_client.post(f"{URL}{order_id}/start/", {}, format="json", **headers)

    assert r.status_code == 402
    body = r.json()
    assert body["error"]["code"] == "payment_required"
    assert body["error"]["request_id"]


def test_full_lab_flow_over_http(api_client, headers, encounter, cbc_item, issue, pay):
    from hm_ledger.charges.models import Charge

    order_id = _create(api_client, headers, encounter, cbc_item).data["id"]
    pay(issue(list(Charge.objects.filter(source_id=order_id))), "100")

    r = api_client.post(f"{URL}{order_id}/start/", {}, format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["status"] == "IN_PROGRESS"

    r = api_client.post(f"{URL}{order_id}/complete/", {"result_payload": {"wbc": 6.1}}, format="json", **headers)
    assert r.status_code == 200, r.data
    r = api_client.post(f"{URL}{order_id}/complete/", {"result_payload": {"wbc": 6.4}}, format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["status"] == "COMPLETED"
    assert r.data["result_payload"] == {"wbc": 6.4}
    assert [x["version"] for x in r.data["results"]] == [1, 2]


def test_illegal_transition_is_409(api_client, headers, encounter, cbc_item):
    order_id = _create(api_client, headers, encounter, cbc_item).data["id"]
    api_client.post(f"{URL}{order_id}/cancel/", {}, format="json", **headers)

    r = api_client.post(f"{URL}{order_id}/cancel/", {}, format="json", **headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_transition"


def test_waive_without_reason_is_400(api_client, headers, encounter, cbc_item):
    order_id = _create(api_client, headers, encounter, cbc_item).data["id"]

    r = api_client.post(f"{URL}{order_id}/waive/", {}, format="json", **headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "reason_required"

    r = api_client.post(f"{URL}{order_id}/waive/", {"reason": "Charity"}, format="json", **headers)
    assert r.status_code == 200
    assert r.data["can_fulfill"] is True


def test_list_filters_by_payment_status(api_client, headers, encounter, cbc_item):
    _create(api_client, headers, encounter, cbc_item)

    r = api_client.get(URL, {"payment_status": "PENDING"}, **headers)
    assert r.status_code == 200
    assert r.data["count"] == 1

    r = api_client.get(URL, {"payment_status": "PAID"}, **headers)
    assert r.data["count"] == 0


def test_unknown_order_is_404(api_client, headers):
    r = api_client.get(f"{URL}00000000-0000-0000-0000-0000000000aa/", **headers)
    assert r.status_code == 404
