"""Testes da API FastAPI."""

from decimal import Decimal

from sqlmodel import Session, select

from conftest import add_quotation
from garage.models import StockProduct, WorkOrder


def stock_of(engine, product_id):
    with Session(engine) as session:
        return session.exec(select(StockProduct).where(StockProduct.product_id == product_id)).one().quantity


def compose_body(workshop, **kwargs):
    body = {
        "vehicle_id": workshop.vehicle_id,
        "description": "Troca de pastilhas e filtro",
        "lines": [
            {"product_id": workshop.product_a, "quantity": 2},
            {"product_id": workshop.product_b, "quantity": 1, "labor_price": "500"},
        ],
    }
    body.update(kwargs)
    return body


class TestCatalog:
    def test_list_vehicles(self, client, workshop):
        response = client.get("/vehicles")
        assert response.status_code == 200
        assert {v["license_plate"] for v in response.json()} == {"ABCD12", "WXYZ98"}

    def test_vehicle_not_found(self, client, workshop):
        response = client.get("/vehicles/999")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    def test_active_tax(self, client, workshop):
        response = client.get("/tax/active")
        assert response.status_code == 200
        data = response.json()
        assert data["tax_id"] == workshop.tax_id
        assert Decimal(data["tax_rate"]) == Decimal("19")

    def test_active_tax_not_configured(self, client):
        response = client.get("/tax/active")
        assert response.status_code == 404
        assert response.json()["error_type"] == "TaxNotConfiguredError"

    def test_quotations_filtered_by_vehicle(self, client, session, workshop):
        own = add_quotation(session, workshop)
        add_quotation(session, workshop, vehicle_id=workshop.other_vehicle_id)

        response = client.get("/quotations", params={"vehicle_id": workshop.vehicle_id})
        assert response.status_code == 200
        assert [q["quotation_id"] for q in response.json()] == [own]

    def test_quotation_details(self, client, session, workshop):
        quotation_id = add_quotation(session, workshop)
        response = client.get(f"/quotations/{quotation_id}/details")
        assert response.status_code == 200
        assert len(response.json()) == 2


class TestCompose:
    def test_creates_priced_order(self, client, engine, workshop):
        response = client.post("/workOrders/compose", json=compose_body(workshop))
        assert response.status_code == 201
        data = response.json()
        order = data["work_order"]
        assert data["state"] == "completed"
        assert Decimal(order["subtotal"]) == Decimal("4700")
        assert Decimal(order["tax_amount"]) == Decimal("893")
        assert Decimal(order["total_amount"]) == Decimal("5593")
        assert order["order_status"] == "not_started"
        assert len(data["details"]) == 2
        assert stock_of(engine, workshop.product_a) == 3

    def test_insufficient_stock_is_conflict(self, client, engine, workshop):
        body = compose_body(workshop, lines=[{"product_id": workshop.product_b, "quantity": 5}])
        response = client.post("/workOrders/compose", json=body)
        assert response.status_code == 409
        assert response.json()["error_type"] == "InsufficientStockError"
        assert "disponível 3" in response.json()["message"]
        with Session(engine) as session:
            assert session.exec(select(WorkOrder)).all() == []

    def test_empty_lines_rejected(self, client, workshop):
        response = client.post("/workOrders/compose", json=compose_body(workshop, lines=[]))
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_quotation_and_lines_rejected(self, client, session, workshop):
        quotation_id = add_quotation(session, workshop)
        response = client.post("/workOrders/compose", json=compose_body(workshop, quotation_id=quotation_id))
        assert response.status_code == 400

    def test_from_quotation(self, client, session, workshop):
        quotation_id = add_quotation(session, workshop)
        body = {"vehicle_id": workshop.vehicle_id, "description": "Revisão", "quotation_id": quotation_id}
        response = client.post("/workOrders/compose", json=body)
        assert response.status_code == 201
        order = response.json()["work_order"]
        assert order["quotation_id"] == quotation_id
        assert Decimal(order["total_amount"]) == Decimal("5593")

    def test_idempotent_resubmission(self, client, engine, workshop):
        body = compose_body(workshop, idempotency_key="abc-1")
        first = client.post("/workOrders/compose", json=body).json()
        second = client.post("/workOrders/compose", json=body).json()
        assert second["replayed"] is True
        assert second["work_order"]["work_order_id"] == first["work_order"]["work_order_id"]
        assert stock_of(engine, workshop.product_a) == 3


class TestWorkOrders:
    def test_raw_create_checks_total(self, client, workshop):
        body = {
            "vehicle_id": workshop.vehicle_id,
            "description": "OS manual",
            "total_amount": "6000",
            "subtotal": "4700",
            "tax_amount": "893",
            "tax_rate": "19",
        }
        response = client.post("/workOrders", json=body)
        assert response.status_code == 400

        body["total_amount"] = "5593"
        response = client.post("/workOrders", json=body)
        assert response.status_code == 201
        assert response.json()["order_status"] == "not_started"

    def test_raw_create_conflicts(self, client, session, workshop):
        quotation_id = add_quotation(session, workshop)
        body = {
            "vehicle_id": workshop.vehicle_id,
            "quotation_id": quotation_id,
            "description": "OS manual",
            "total_amount": "5593",
            "subtotal": "4700",
            "tax_amount": "893",
            "tax_rate": "19",
            "idempotency_key": "raw-1",
        }
        assert client.post("/workOrders", json=body).status_code == 201

        response = client.post("/workOrders", json=body)
        assert response.status_code == 409
        assert response.json()["error_type"] == "DuplicateOrderError"

        body["idempotency_key"] = "raw-2"
        response = client.post("/workOrders", json=body)
        assert response.status_code == 400
        assert "já gerou" in response.json()["message"]
        assert len(client.get("/workOrders").json()) == 1

    def test_status_flow(self, client, workshop):
        order_id = client.post("/workOrders/compose", json=compose_body(workshop)).json()["work_order"]["work_order_id"]

        response = client.patch(f"/workOrders/{order_id}/status", json={"order_status": "finished"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidStatusTransitionError"

        response = client.patch(f"/workOrders/{order_id}/status", json={"order_status": "in_progress"})
        assert response.status_code == 200
        assert response.json()["order_status"] == "in_progress"

        response = client.patch(f"/workOrders/{order_id}/status", json={"order_status": "not_started"})
        assert response.status_code == 400

    def test_delete_removes_details(self, client, workshop):
        order_id = client.post("/workOrders/compose", json=compose_body(workshop)).json()["work_order"]["work_order_id"]
        assert client.delete(f"/workOrders/{order_id}").status_code == 200
        assert client.get(f"/workOrders/{order_id}").status_code == 404
        assert client.get(f"/workOrders/{order_id}/details").status_code == 404

    def test_filter_by_quotation(self, client, session, workshop):
        quotation_id = add_quotation(session, workshop)
        client.post("/workOrders/compose", json=compose_body(workshop))
        client.post(
            "/workOrders/compose",
            json={"vehicle_id": workshop.vehicle_id, "description": "Revisão", "quotation_id": quotation_id},
        )
        response = client.get("/workOrders", params={"quotation_id": quotation_id})
        assert [o["quotation_id"] for o in response.json()] == [quotation_id]


class TestStock:
    def test_put_sets_absolute_quantity(self, client, engine, workshop):
        response = client.put(f"/stockProducts/{workshop.stock_a}", json={"quantity": 12})
        assert response.status_code == 200
        assert response.json()["quantity"] == 12
        assert stock_of(engine, workshop.product_a) == 12

    def test_put_rejects_negative(self, client, workshop):
        response = client.put(f"/stockProducts/{workshop.stock_a}", json={"quantity": -1})
        assert response.status_code == 422

    def test_conditional_decrement(self, client, engine, workshop):
        url = f"/stockProducts/product/{workshop.product_b}/decrement"
        response = client.post(url, json={"quantity": 2})
        assert response.status_code == 200
        assert response.json()["quantity"] == 1

        response = client.post(url, json={"quantity": 2})
        assert response.status_code == 409
        assert response.json()["error_type"] == "StockUpdateError"
        assert stock_of(engine, workshop.product_b) == 1

    def test_restore(self, client, engine, workshop):
        response = client.post(f"/stockProducts/product/{workshop.product_a}/restore", json={"quantity": 2})
        assert response.status_code == 200
        assert stock_of(engine, workshop.product_a) == 7

    def test_decrement_unknown_product(self, client, workshop):
        response = client.post("/stockProducts/product/999/decrement", json={"quantity": 1})
        assert response.status_code == 404
