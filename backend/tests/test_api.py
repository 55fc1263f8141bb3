"""API tests for materials, products, batches, deductions and leftovers."""

from atelier.models.stock import StockTransaction

API = "/api/v1"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200


class TestMaterialsAPI:
    def test_create_and_get(self, client, meters):
        response = client.post(f"{API}/materials", json={
            "name": "Gabardine",
            "color": "beige",
            "unit_price": 6.0,
            "stock_quantity": 40.0,
            "quantity_type_id": meters.id,
        })
        assert response.status_code == 201
        material = response.json()["material"]
        assert material["opening_stock"] == 40.0
        assert material["unit"] == "m"

        response = client.get(f"{API}/materials/{material['id']}")
        assert response.status_code == 200
        assert response.json()["material"]["name"] == "Gabardine"

    def test_negative_stock_rejected(self, client):
        response = client.post(f"{API}/materials", json={"name": "X", "stock_quantity": -1})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_material(self, client):
        response = client.get(f"{API}/materials/999")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_movement_and_reconciliation(self, client, make_material):
        fabric = make_material("Tulle", stock=10.0)

        response = client.post(f"{API}/materials/{fabric.id}/movements", json={
            "direction": "in", "quantity": 5, "reason": "purchase",
        })
        assert response.status_code == 201
        assert response.json()["new_stock"] == 15.0

        response = client.post(f"{API}/materials/{fabric.id}/movements", json={
            "direction": "out", "quantity": 50,
        })
        assert response.status_code == 400
        assert response.json()["available"] == 15.0

        response = client.get(f"{API}/materials/{fabric.id}/reconciliation")
        body = response.json()
        assert body["balanced"] is True
        assert body["expected_stock"] == 15.0

        response = client.get(f"{API}/materials/{fabric.id}/transactions")
        assert response.json()["total"] == 1

    def test_stock_count(self, client, make_material):
        fabric = make_material("Feutre", stock=10.0)

        response = client.post(f"{API}/materials/{fabric.id}/stock-count", json={"counted_quantity": 12})

        assert response.status_code == 200
        body = response.json()
        assert body["material"]["stock_quantity"] == 12.0
        assert body["transaction"]["reason"] == "stock_count"


class TestProductsAPI:
    def test_configure_and_read(self, client, make_material, make_product):
        fabric = make_material("Maille")
        product = make_product("Pull", [])

        response = client.put(f"{API}/products/regular/{product.id}/materials", json={
            "materials": [
                {"material_id": fabric.id, "quantity_needed": 1.2},
                {"material_id": fabric.id, "quantity_needed": 0.3, "size_specific": "XL"},
            ],
        })
        assert response.status_code == 200
        assert response.json()["materials_configured"] is True

        response = client.get(f"{API}/products/regular/{product.id}/materials")
        items = response.json()["items"]
        assert [i["size_specific"] for i in items] == [None, "XL"]

        response = client.get(f"{API}/products/ready")
        assert [p["id"] for p in response.json()["items"]] == [product.id]

    def test_duplicate_configuration_rejected(self, client, make_material, make_product):
        fabric = make_material("Maille")
        product = make_product("Pull", [])

        response = client.put(f"{API}/products/regular/{product.id}/materials", json={
            "materials": [
                {"material_id": fabric.id, "quantity_needed": 1, "size_specific": "m"},
                {"material_id": fabric.id, "quantity_needed": 2, "size_specific": "M"},
            ],
        })
        assert response.status_code == 400

    def test_unknown_product_type(self, client):
        response = client.get(f"{API}/products/wholesale/1/materials")
        assert response.status_code == 400


class TestProductionBatchesAPI:
    """Start, inspect and cancel batches over HTTP."""

    def test_start_production(self, client, production_setup):
        response = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id,
            "sizes_breakdown": {"total": 10},
        })

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["batch_reference"].startswith("BATCH-")
        assert body["total_cost"] == 75.0
        assert body["deduction_mode"] == "at_start"
        assert body["materials"][0]["quantity"] == 30.0

    def test_start_accepts_json_text_breakdown(self, client, production_setup):
        response = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id,
            "sizes_breakdown": '{"M": 2}',
        })
        assert response.status_code == 201
        assert response.json()["total_cost"] == 15.0

    def test_insufficient_stock(self, client, production_setup):
        db = production_setup["db"]

        response = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id,
            "sizes_breakdown": {"total": 40},
        })

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["required"] == 120.0
        assert body["available"] == 100.0
        assert body["material_id"] == production_setup["fabric"].id
        assert db.query(StockTransaction).count() == 0

    def test_missing_product_id(self, client):
        response = client.post(f"{API}/production-batches", json={"quantity_to_produce": 1})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid request data"

    def test_unconfigured_product(self, client, make_product):
        product = make_product("Nu", [])
        response = client.post(f"{API}/production-batches", json={
            "product_id": product.id, "quantity_to_produce": 2,
        })
        assert response.status_code == 400

    def test_plan_check(self, client, production_setup):
        db = production_setup["db"]

        response = client.post(f"{API}/production-batches/plan", json={
            "product_id": production_setup["product"].id,
            "planned_quantities": {"S": 20, "M": 20},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["has_sufficient_stock"] is False
        assert body["insufficient_materials"][0]["missing"] == 20.0
        assert body["suggested_quantities"] == {"S": 33, "M": 33}
        assert db.query(StockTransaction).count() == 0

        response = client.post(f"{API}/production-batches/plan", json={
            "product_id": production_setup["product"].id, "product_type": "wholesale",
        })
        assert response.status_code == 400

    def test_get_batch_detail(self, client, production_setup):
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 2,
        }).json()

        response = client.get(f"{API}/production-batches/{created['batch_id']}")

        assert response.status_code == 200
        batch = response.json()["batch"]
        assert batch["batch_reference"] == created["batch_reference"]
        assert batch["materials_used"][0]["quantity_used"] == 6.0
        assert batch["historical_usage"][0]["quantity_used"] == 6.0
        assert batch["status_history"][0]["new_status"] == "planifie"
        assert batch["leftovers"] == []

    def test_unknown_batch(self, client):
        response = client.get(f"{API}/production-batches/4040")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_list_batches(self, client, production_setup):
        client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 1,
        })

        response = client.get(f"{API}/production-batches", params={"status": "planifie"})

        body = response.json()
        assert body["total"] == 1
        assert body["has_more"] is False

    def test_cancel_by_reference(self, client, production_setup):
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 10,
        }).json()

        response = client.post(f"{API}/production-batches/cancel", json={
            "batch_id": created["batch_reference"],
            "cancellation_reason": "Erreur de saisie",
        })
        assert response.status_code == 200
        assert response.json()["materials_restored"][0]["quantity_restored"] == 30.0

        response = client.post(f"{API}/production-batches/cancel", json={
            "batch_id": created["batch_reference"],
        })
        assert response.status_code == 400

    def test_status_update(self, client, production_setup):
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 1,
        }).json()

        response = client.put(
            f"{API}/production-batches/{created['batch_id']}/status", json={"status": "en_cours"}
        )
        assert response.status_code == 200

        response = client.put(
            f"{API}/production-batches/{created['batch_id']}/status", json={"status": "planifie"}
        )
        assert response.status_code == 400

    def test_delete_requires_cancellation(self, client, production_setup):
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 1,
        }).json()

        response = client.delete(f"{API}/production-batches/{created['batch_id']}")
        assert response.status_code == 400


class TestStockDeductionAPI:
    def _planned_batch(self, client, production_setup, pieces=10):
        return client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id,
            "quantity_to_produce": pieces,
            "deduct_stock": False,
        }).json()

    def test_actual_quantities(self, client, production_setup):
        fabric = production_setup["fabric"]
        created = self._planned_batch(client, production_setup)

        response = client.post(f"{API}/stock-deduction/actual-quantities", json={
            "batch_id": created["batch_id"],
            "materials_quantities": {str(fabric.id): 2},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["transactions"][0]["quantity_deducted"] == 20.0
        assert body["transactions"][0]["new_stock"] == 80.0

        response = client.post(f"{API}/stock-deduction/actual-quantities", json={
            "batch_id": created["batch_id"],
            "materials_quantities": {str(fabric.id): 2},
        })
        assert response.status_code == 400

    def test_adjust_and_restore(self, client, production_setup):
        fabric = production_setup["fabric"]
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 10,
        }).json()

        response = client.post(f"{API}/stock-deduction/adjust", json={
            "batch_id": created["batch_id"],
            "materials_adjustments": [
                {"material_id": fabric.id, "configured_quantity": 30, "actual_quantity": 28},
            ],
        })
        assert response.status_code == 200
        assert response.json()["adjustments"][0]["action"] == "added_back"

        response = client.post(f"{API}/stock-deduction/restore", json={
            "material_id": fabric.id, "reference": created["batch_reference"],
        })
        assert response.status_code == 200
        assert response.json()["transaction"]["quantity"] == 30.0

        response = client.get(
            f"{API}/stock-deduction/transactions", params={"reference": created["batch_reference"]}
        )
        assert response.json()["total"] == 3

    def test_restore_without_deduction(self, client, make_material):
        fabric = make_material("Coton")
        response = client.post(f"{API}/stock-deduction/restore", json={
            "material_id": fabric.id, "reference": "BATCH-NONE",
        })
        assert response.status_code == 404


class TestLeftoversAPI:
    def test_save_readd_and_delete(self, client, production_setup):
        fabric = production_setup["fabric"]
        created = client.post(f"{API}/production-batches", json={
            "product_id": production_setup["product"].id, "quantity_to_produce": 10,
        }).json()

        response = client.post(f"{API}/leftovers/save", json={
            "batch_id": created["batch_id"],
            "leftovers": [
                {"material_id": fabric.id, "quantity": 5},
                {"material_id": fabric.id, "quantity": 1, "is_reusable": False},
            ],
        })
        assert response.status_code == 200
        ids = [l["id"] for l in response.json()["leftovers"]]

        response = client.post(f"{API}/leftovers/readd-to-stock", json={"leftover_ids": ids})
        assert response.json()["count"] == 1

        response = client.post(f"{API}/leftovers/readd-to-stock", json={"leftover_ids": ids})
        assert response.json()["count"] == 0

        response = client.get(f"{API}/materials/{fabric.id}")
        assert response.json()["material"]["stock_quantity"] == 75.0

        assert client.delete(f"{API}/leftovers/{ids[0]}").status_code == 400
        assert client.delete(f"{API}/leftovers/{ids[1]}").status_code == 200
