import io
import threading
import pytest
from openpyxl import load_workbook
from services.batch_import import RowOutcome, RowStatus
from services.database import DatabaseError
from services.fabric_pool import create_project
from services.functions_client import FunctionResult
from services.grid_resolver import create_grid, create_rule
from app.routes.inventory_import import get_import


class TestRoutes:
    """Class-based tests for Flask routes."""

    @pytest.fixture(autouse=True)
    def setup(self, app_context, client, app_db):
        """Set up the test client and app database."""
        self.app = app_context
        self.client = client
        self.db = app_db

    def test_home_route(self, auth_headers):
        response = self.client.get('/', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()["user"] == "testuser"

    def test_login_required(self):
        response = self.client.get('/projects/P1/fabric-pool')
        assert response.status_code == 401

    def test_health(self):
        assert self.client.get('/health').get_json() == {"status": "ok"}

    # ---------- fabric pool ----------

    def test_fabric_pool_flow(self, auth_headers):
        create_project(self.db, "P1", "Smith")

        response = self.client.put('/projects/P1/fabric-pool/surfaces/S1', headers=auth_headers, json={
            "fabric_id": "F1", "amount_ordered": 10, "amount_used": 5, "cost_per_unit": 20,
        })
        assert response.status_code == 200
        assert response.get_json()["available_leftover"] == 5

        response = self.client.post('/projects/P1/fabric-pool/needs', headers=auth_headers, json={
            "fabric_id": "F1", "required_amount": 8, "cost_per_unit": 20,
        })
        assert response.get_json() == {
            "available_from_pool": 5, "used_from_pool": 5, "needs_ordering": 3, "cost_savings": 100,
        }

        response = self.client.delete('/projects/P1/fabric-pool/surfaces/S1', headers=auth_headers)
        assert response.get_json()["fabric_pool"] == {}

    def test_create_project(self, auth_headers):
        response = self.client.post('/projects', headers=auth_headers, json={"id": "P7", "name": "Jones"})
        assert response.status_code == 201

        response = self.client.get('/projects/P7/fabric-pool', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()["summary"]["fabrics"] == 0

    def test_fabric_pool_unknown_project(self, auth_headers):
        response = self.client.get('/projects/missing/fabric-pool', headers=auth_headers)
        assert response.status_code == 404
        assert "not found" in response.get_json()["error"]

    def test_fabric_pool_database_error(self, auth_headers, mocker):
        mocker.patch("app.routes.fabric_pool.get_project_pool", side_effect=DatabaseError("disk I/O error"))

        response = self.client.get('/projects/P1/fabric-pool', headers=auth_headers)
        assert response.status_code == 500

        response = self.client.post('/projects/P1/fabric-pool/needs', headers=auth_headers,
                                    json={"fabric_id": "F1", "required_amount": 2})
        assert response.status_code == 500

    def test_fabric_pool_overdraw(self, auth_headers):
        create_project(self.db, "P1")
        response = self.client.put('/projects/P1/fabric-pool/surfaces/S1', headers=auth_headers, json={
            "fabric_id": "F1", "amount_ordered": 1, "amount_used": 2,
        })
        assert response.status_code == 400
        assert "overdrawn" in response.get_json()["error"]

    # ---------- inventory import ----------

    def test_inventory_import_csv(self, auth_headers):
        data = {'file': (io.BytesIO(b"name,sku,cost_price\nLinen,L-1,12\nVelvet,,30\n,,4\n"), 'items.csv')}
        response = self.client.post('/inventory/import/start', data=data,
                                    content_type='multipart/form-data', headers=auth_headers)
        assert response.status_code == 202
        job_id = response.get_json()["job_id"]
        get_import(job_id).thread.join(10)

        status = self.client.get(f'/inventory/import/{job_id}/status', headers=auth_headers).get_json()
        assert status["status"] == "completed"
        assert status["summary"] == "2 created, 1 error"
        assert status["done"]

        response = self.client.get(f'/inventory/import/{job_id}/results.xlsx', headers=auth_headers)
        assert response.status_code == 200
        ws = load_workbook(io.BytesIO(response.data)).active
        assert ws.max_row == 4

        rows = self.db.get_item("inventory_items", {"user_id": "testuser"})
        assert len(rows) == 2

    def test_inventory_import_json_items(self, auth_headers):
        response = self.client.post('/inventory/import/start', headers=auth_headers, json={
            "items": [{"name": "Voile", "sku": "V-1", "tags": ["sheer"], "active": True}],
        })
        job_id = response.get_json()["job_id"]
        get_import(job_id).thread.join(10)

        row = self.db.get_item("inventory_items", {"sku": "V-1"})[0]
        assert row["name"] == "Voile"
        assert row["tags"] == '["sheer"]'
        assert row["active"] == 1

    def test_inventory_import_rejects_empty_upload(self, auth_headers):
        data = {'file': (io.BytesIO(b"name,sku\n"), 'items.csv')}
        response = self.client.post('/inventory/import/start', data=data,
                                    content_type='multipart/form-data', headers=auth_headers)
        assert response.status_code == 400

    def test_inventory_import_controls_on_finished_job(self, auth_headers):
        response = self.client.post('/inventory/import/start', headers=auth_headers,
                                    json={"items": [{"name": "A", "sku": "A"}]})
        job_id = response.get_json()["job_id"]
        get_import(job_id).thread.join(10)

        assert self.client.post(f'/inventory/import/{job_id}/pause', headers=auth_headers).status_code == 400
        assert self.client.post(f'/inventory/import/{job_id}/resume', headers=auth_headers).status_code == 400

        response = self.client.post(f'/inventory/import/{job_id}/reset', headers=auth_headers)
        assert response.get_json()["status"] == "idle"
        assert get_import(job_id) is None

    def test_inventory_import_unknown_job(self, auth_headers):
        assert self.client.get('/inventory/import/nope/status', headers=auth_headers).status_code == 404
        assert self.client.post('/inventory/import/nope/pause', headers=auth_headers).status_code == 404

    def test_inventory_import_pause_and_resume(self, auth_headers, mocker):
        entered, release = threading.Event(), threading.Event()
        chunk_sizes = []

        def process_chunk(chunk):
            chunk_sizes.append(len(chunk))
            if len(chunk_sizes) == 1:
                entered.set()
                release.wait(10)
            return [RowOutcome(RowStatus.SUCCESS) for _ in chunk]

        mocker.patch("app.routes.inventory_import.make_upsert_processor", return_value=process_chunk)
        self.app.config["IMPORT_BATCH_SIZE"] = 2
        items = [{"name": f"Item {i}", "sku": f"I-{i}"} for i in range(5)]

        response = self.client.post('/inventory/import/start', headers=auth_headers, json={"items": items})
        job_id = response.get_json()["job_id"]
        assert entered.wait(10)

        # first chunk is in flight; the pause lands at the next chunk boundary
        assert self.client.post(f'/inventory/import/{job_id}/pause', headers=auth_headers).status_code == 202
        release.set()
        get_import(job_id).thread.join(10)

        status = self.client.get(f'/inventory/import/{job_id}/status', headers=auth_headers).get_json()
        assert status["status"] == "paused"
        assert status["job_status"] == "paused"
        assert status["can_resume"]
        assert status["progress"]["current"] == 2
        assert not status["done"]

        assert self.client.post(f'/inventory/import/{job_id}/resume', headers=auth_headers).status_code == 202
        get_import(job_id).thread.join(10)

        status = self.client.get(f'/inventory/import/{job_id}/status', headers=auth_headers).get_json()
        assert status["status"] == "completed"
        assert status["job_status"] == "completed"
        assert not status["can_resume"]
        assert status["progress"]["current"] == 5
        assert status["summary"] == "5 created"
        assert status["done"]
        assert chunk_sizes == [2, 2, 1]

    def test_app_uses_test_database(self, tmp_path):
        assert self.app.config["database"] == str(tmp_path / "test.db")


    # ---------- pricing grids ----------

    def _seed_grid(self):
        grid_id = create_grid(self.db, "testuser", "Roller B",
                              {"widths": [60, 90], "heights": [100, 150], "prices": [[50, 60], [65, 78]]},
                              grid_code="RB-B", product_type="roller_blind", price_group="B")
        create_rule(self.db, "testuser", grid_id, product_type="roller_blind", price_group="B", priority=5)
        return grid_id

    def test_resolve_and_price(self, auth_headers):
        grid_id = self._seed_grid()

        response = self.client.post('/pricing-grids/resolve', headers=auth_headers,
                                    json={"product_type": "roller_blind", "price_group": "b"})
        assert response.get_json()["matched"]
        assert response.get_json()["grid_id"] == grid_id

        response = self.client.post('/pricing-grids/price', headers=auth_headers, json={
            "product_type": "roller_blind", "price_group": "B", "width": 61, "drop": 100,
        })
        assert response.get_json()["price"] == 60

    def test_resolve_no_match(self, auth_headers):
        response = self.client.post('/pricing-grids/resolve', headers=auth_headers,
                                    json={"product_type": "venetian"})
        assert response.status_code == 200
        assert response.get_json() == {"matched": False}

    def test_resolve_requires_product_type(self, auth_headers):
        response = self.client.post('/pricing-grids/resolve', headers=auth_headers, json={})
        assert response.status_code == 400

    def test_diagnose(self, auth_headers):
        self._seed_grid()
        response = self.client.post('/pricing-grids/diagnose', headers=auth_headers,
                                    json={"product_type": "roller_blind", "price_group": "C"})
        report = response.get_json()
        assert not report["success"]
        assert report["possible_issues"] == ['No grids exist with price group "C"']

    def test_upload_grid_with_rule(self, auth_headers):
        data = {
            'file': (io.BytesIO(b"Drop,60,90\n100,50,60\n150,65,78\n"), 'grid.csv'),
            'name': 'Vertical A',
            'product_type': 'vertical_blind',
            'price_group': 'A',
            'priority': '2',
        }
        response = self.client.post('/pricing-grids/upload', data=data,
                                    content_type='multipart/form-data', headers=auth_headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["rule_id"] is not None
        assert (body["widths"], body["drops"]) == (2, 2)

        response = self.client.post('/pricing-grids/price', headers=auth_headers, json={
            "product_type": "vertical_blind", "price_group": "A", "width": 90, "drop": 150,
        })
        assert response.get_json()["price"] == 78

    # ---------- client library ----------

    def test_client_import(self, auth_headers, mocker):
        invoke = mocker.patch("services.functions_client.FunctionsClient.invoke",
                              return_value=FunctionResult(data={"created": 1, "updated": 0}))
        data = {'file': (io.BytesIO(b"name,email\nA,a@example.com\n"), 'clients.csv'), 'format': 'generic'}

        response = self.client.post('/clients/import', data=data,
                                    content_type='multipart/form-data', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["created"] == 1
        assert invoke.call_args.args[1]["user_id"] == "testuser"

    def test_client_import_backend_error(self, auth_headers, mocker):
        mocker.patch("services.functions_client.FunctionsClient.invoke",
                     return_value=FunctionResult(error="Error 500: boom"))
        data = {'file': (io.BytesIO(b"name,email\nA,a@example.com\n"), 'clients.csv'), 'format': 'generic'}

        response = self.client.post('/clients/import', data=data,
                                    content_type='multipart/form-data', headers=auth_headers)

        assert response.status_code == 502
        assert response.get_json() == {"error": "Error 500: boom"}
