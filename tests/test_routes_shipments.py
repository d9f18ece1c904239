"""Shipment route tests."""

from __future__ import annotations

import json

import httpx
from litestar import Litestar
from litestar.testing import TestClient

from conftest import PDF_BYTES, FakeDelhivery
from litestar_delhivery.plugin import create_delhivery_router
from litestar_delhivery.webhooks import SIGNATURE_HEADER, compute_signature


def _manifest(client: TestClient, order_id: str = "42") -> str:
    resp = client.post("/shipments", json={"order_id": order_id})
    assert resp.status_code == 201, resp.text
    return resp.json()["awb"]


def _push(
    client: TestClient,
    awb: str,
    status_type: str,
    status: str,
    *,
    nsl_code: str = "",
    instructions: str = "",
) -> dict:
    raw = json.dumps(
        {
            "Shipment": {
                "AWB": awb,
                "NSLCode": nsl_code,
                "Status": {
                    "Status": status,
                    "StatusType": status_type,
                    "StatusDateTime": "2026-10-19T15:30:00",
                    "Instructions": instructions,
                },
            }
        }
    ).encode()
    resp = client.post(
        "/webhooks/delhivery",
        content=raw,
        headers={
            SIGNATURE_HEADER: compute_signature(raw, "hook-secret"),
            "content-type": "application/json",
        },
    )
    assert resp.status_code == 200
    return resp.json()


class TestShipmentsHealthRoute:
    def test_health_returns_ok(self, client: TestClient) -> None:
        resp = client.get("/shipments/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestManifestRoute:
    def test_manifest_returns_201(self, client: TestClient) -> None:
        resp = client.post("/shipments", json={"order_id": "42"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["awb"] == "AWB001"
        assert body["state"] == "manifested"
        assert body["order_reference"] == "ORD-42"
        assert body["classification"]["can_cancel"] is True
        assert body["classification"]["before_pickup"] is True

    def test_second_manifest_conflicts(self, client: TestClient) -> None:
        _manifest(client)
        resp = client.post("/shipments", json={"order_id": "42"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "precondition_failed"

    def test_unknown_order_returns_400(self, client: TestClient) -> None:
        resp = client.post("/shipments", json={"order_id": "nope"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_unconfigured_returns_503(
        self, config, repository, orders, http_client
    ) -> None:
        router = create_delhivery_router(
            config=config.model_copy(update={"api_key": ""}),
            repository=repository,
            order_management=orders,
            http_client=http_client,
        )
        app = Litestar(route_handlers=[router])
        with TestClient(app=app) as tc:
            resp = tc.post("/shipments", json={"order_id": "42"})
        assert resp.status_code == 503
        assert resp.json()["code"] == "not_configured"


class TestBulkManifestRoute:
    def test_bulk_manifest_reports_each_order(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        _manifest(client)

        resp = client.post(
            "/shipments/bulk", json={"order_ids": ["42", "43", "nope"]}
        )

        assert resp.status_code == 201
        body = resp.json()
        assert [s["awb"] for s in body["manifested"]] == ["AWB002"]
        assert body["manifested"][0]["order_id"] == "43"
        assert body["manifested"][0]["classification"]["can_cancel"] is True
        assert body["already_manifested"] == ["42"]
        assert list(body["skipped"]) == ["nope"]
        assert body["failed"] == {}
        assert len(carrier.manifests) == 2

    def test_bulk_manifest_requires_orders(self, client: TestClient) -> None:
        resp = client.post("/shipments/bulk", json={"order_ids": []})
        assert resp.status_code == 400


class TestGetShipmentRoute:
    def test_get_returns_shipment(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.get(f"/shipments/{awb}")
        assert resp.status_code == 200
        assert resp.json()["awb"] == awb

    def test_missing_shipment_returns_404(self, client: TestClient) -> None:
        resp = client.get("/shipments/AWB404")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"


class TestCancelRoute:
    def test_cancel_returns_refund_note(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(f"/shipments/{awb}/cancel")
        assert resp.status_code == 200
        assert resp.json() == {
            "awb": awb,
            "refund": True,
            "rto_triggered": False,
            "note": "Cancelled before pickup: full refund.",
        }
        assert client.get(f"/shipments/{awb}").json()["state"] == (
            "cancelled"
        )

    def test_cancel_after_delivery_conflicts(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        awb = _manifest(client)
        _push(client, awb, "DL", "Delivered")
        sent = len(carrier.requests)

        resp = client.post(f"/shipments/{awb}/cancel")

        assert resp.status_code == 409
        assert len(carrier.requests) == sent


class TestEditRoutes:
    def test_update_returns_changed_fields(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(
            f"/shipments/{awb}/update",
            json={"updates": {"name": "Asha V.", "add": "14 MG Road"}},
        )
        assert resp.status_code == 200
        assert resp.json() == {"awb": awb, "updated": ["add", "name"]}

    def test_update_rejects_payment_fields(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(
            f"/shipments/{awb}/update", json={"updates": {"pt": "COD"}}
        )
        assert resp.status_code == 400

    def test_payment_mode_conversion(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(
            f"/shipments/{awb}/payment-mode",
            json={"mode": "COD", "cod_amount": "1499.00"},
        )
        assert resp.status_code == 200
        assert resp.json()["payment_mode"] == "COD"
        assert resp.json()["cod_amount"] == "1499.00"

    def test_ewaybill_only_for_high_value(self, client: TestClient) -> None:
        low = _manifest(client, "42")
        high = _manifest(client, "43")

        rejected = client.post(
            f"/shipments/{low}/ewaybill", json={"ewbn": "331001234567"}
        )
        accepted = client.post(
            f"/shipments/{high}/ewaybill", json={"ewbn": "331001234567"}
        )

        assert rejected.status_code == 409
        assert accepted.status_code == 200
        assert accepted.json()["ewaybill"] == "331001234567"


class TestNDRRoute:
    def test_ndr_requires_open_report(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(
            f"/shipments/{awb}/ndr", json={"action": "RE-ATTEMPT"}
        )
        assert resp.status_code == 409

    def test_reattempt_after_ndr_push(self, client: TestClient) -> None:
        awb = _manifest(client)
        pushed = _push(
            client,
            awb,
            "UD",
            "Pending",
            nsl_code="EOD-74",
            instructions="Consignee not available",
        )
        assert pushed["ndr_detected"] is True

        resp = client.post(
            f"/shipments/{awb}/ndr", json={"action": "RE-ATTEMPT"}
        )

        assert resp.status_code == 200
        assert resp.json() == {"awb": awb, "action": "RE-ATTEMPT"}

    def test_invalid_action_returns_400(self, client: TestClient) -> None:
        awb = _manifest(client)
        resp = client.post(f"/shipments/{awb}/ndr", json={"action": "WAIT"})
        assert resp.status_code == 400


class TestReturnRoute:
    def test_return_for_delivered_returns_201(
        self, client: TestClient
    ) -> None:
        awb = _manifest(client)
        _push(client, awb, "DL", "Delivered")

        resp = client.post(
            f"/shipments/{awb}/return", json={"qc_enabled": False}
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["is_return"] is True
        assert body["state"] == "reverse_pickup_pending"
        assert client.get(f"/shipments/{awb}").json()["return_awb"] == (
            body["awb"]
        )

    def test_return_before_delivery_conflicts(
        self, client: TestClient
    ) -> None:
        awb = _manifest(client)
        resp = client.post(f"/shipments/{awb}/return", json={})
        assert resp.status_code == 409


class TestTrackingRoutes:
    def test_tracking_snapshot(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        carrier.set_tracking("AWB001", "UD", "In Transit")
        resp = client.get("/shipments/AWB001/tracking")
        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "in_transit"
        assert body["scans"][0]["status"] == "In Transit"

    def test_carrier_outage_returns_502(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        carrier.respond(
            "GET",
            "/api/v1/packages/json/",
            httpx.Response(503, json={"message": "maintenance"}),
        )
        resp = client.get("/shipments/AWB001/tracking")
        assert resp.status_code == 502
        assert resp.json()["code"] == "http_error"

    def test_refresh_applies_polled_status(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        awb = _manifest(client)
        carrier.set_tracking(awb, "UD", "Dispatched", "2026-10-19T09:00:00")

        resp = client.post("/shipments/refresh", json={"awbs": [awb]})

        assert resp.status_code == 200
        assert resp.json()[0]["outcome"] == "applied"
        assert resp.json()[0]["state"] == "dispatched"

    def test_refresh_requires_awbs(self, client: TestClient) -> None:
        resp = client.post("/shipments/refresh", json={"awbs": []})
        assert resp.status_code == 400


class TestDocumentRoutes:
    def test_document_link(self, client: TestClient) -> None:
        resp = client.get("/shipments/AWB001/documents/epod")
        assert resp.status_code == 200
        assert resp.json() == {
            "awb": "AWB001",
            "doc_type": "EPOD",
            "url": "https://docs.delhivery.test/epod.pdf",
        }

    def test_label_pdf(self, client: TestClient) -> None:
        resp = client.get("/shipments/AWB001/label")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/pdf")
        assert "label-AWB001.pdf" in resp.headers["content-disposition"]
        assert resp.content == PDF_BYTES

    def test_label_link(
        self, client: TestClient, carrier: FakeDelhivery
    ) -> None:
        carrier.respond(
            "GET",
            "/api/p/packing_slip",
            httpx.Response(
                200, json={"packages": [{"pdf": "https://s3.test/l.pdf"}]}
            ),
        )
        resp = client.get("/shipments/AWB001/label")
        assert resp.status_code == 200
        assert resp.json() == {
            "awb": "AWB001",
            "url": "https://s3.test/l.pdf",
        }
