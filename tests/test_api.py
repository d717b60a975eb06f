"""Tests for API endpoints."""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from fastapi.testclient import TestClient
from crm_segmentation.api import app
from crm_segmentation.db import get_db
from crm_segmentation.models import Activity, Organization
from conftest import make_customer


@pytest.fixture
def client(db_session):
    """Create a test client with database dependency override."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def populated_org(db_session, organization):
    recent = datetime.now() - timedelta(days=5)
    champ = make_customer(organization.id, email="champ@example.com", first_name="Cam",
                          order_count=25, total_spent=Decimal("1500"), last_order_at=recent)
    ghost = make_customer(organization.id, email="ghost@example.com")
    db_session.add_all([champ, ghost])
    db_session.commit()
    db_session.add_all([Activity(customer_id=champ.id, type="PURCHASE", created_at=recent) for _ in range(3)])
    db_session.commit()
    return organization


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert data["total_customers"] == 0


def test_recalculate_organization(client, populated_org):
    response = client.post(f"/organizations/{populated_org.id}/segmentation/recalculate")
    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["failed"] == 0
    by_type = {s["segment_type"]: s for s in data["segments"]}
    assert by_type["CHAMPION"]["customer_count"] == 1
    assert by_type["AT_RISK"]["customer_count"] == 1


def test_recalculate_unknown_organization(client, db_session):
    response = client.post("/organizations/999/segmentation/recalculate")
    assert response.status_code == 404
    assert response.json()["detail"] == "Organization 999 not found"


def test_list_segments_after_assignment(client, populated_org):
    client.post(f"/organizations/{populated_org.id}/segmentation/recalculate")

    response = client.get(f"/organizations/{populated_org.id}/segments")
    assert response.status_code == 200
    segments = response.json()["segments"]
    assert len(segments) == 6
    assert all(s["is_ai_powered"] for s in segments)


def test_assign_segments_without_recalculation(client, populated_org):
    response = client.post(f"/organizations/{populated_org.id}/segments/assign")
    assert response.status_code == 200
    assert all(s["customer_count"] == 0 for s in response.json()["segments"])


def test_recalculate_single_customer(client, populated_org, db_session):
    response = client.post("/customers/1/segmentation")
    assert response.status_code == 200
    data = response.json()
    assert data["rfm_score"] == "555"
    assert data["engagement_score"] == 18
    assert "CHAMPION" in data["segment_tags"]

    detail = client.get("/customers/1").json()
    assert detail["rfm_score"] == "555"
    assert detail["churn_risk"] == "LOW"


def test_recalculate_missing_customer(client, db_session):
    response = client.post("/customers/4242/segmentation")
    assert response.status_code == 404
    assert response.json() == {"detail": "Customer 4242 not found", "status": "error"}


def test_get_customer_not_found(client, db_session):
    """Test getting a non-existent customer."""
    response = client.get("/customers/4242")
    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_segment_customers_and_export(client, populated_org):
    data = client.post(f"/organizations/{populated_org.id}/segmentation/recalculate").json()
    champion_id = next(s["segment_id"] for s in data["segments"] if s["segment_type"] == "CHAMPION")

    members = client.get(f"/segments/{champion_id}/customers").json()
    assert [c["email"] for c in members["customers"]] == ["champ@example.com"]

    export = client.get(f"/export/segments/{champion_id}")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "champ@example.com" in export.text


def test_export_empty_segment(client, populated_org):
    data = client.post(f"/organizations/{populated_org.id}/segments/assign").json()
    segment_id = data["segments"][0]["segment_id"]
    assert client.get(f"/export/segments/{segment_id}").status_code == 404


def test_segment_insight(client, populated_org):
    data = client.post(f"/organizations/{populated_org.id}/segmentation/recalculate").json()
    at_risk_id = next(s["segment_id"] for s in data["segments"] if s["segment_type"] == "AT_RISK")

    response = client.get(f"/segments/{at_risk_id}/insight")
    assert response.status_code == 200
    insight = response.json()
    assert insight["stats"]["customer_count"] == 1
    assert insight["churn_probability"] == 1.0


def test_unknown_segment_returns_404(client, db_session):
    response = client.get("/segments/999/insight")
    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_cron_requires_secret(client, db_session):
    assert client.post("/cron/segmentation").status_code == 401
    assert client.post("/cron/segmentation", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_cron_runs_all_organizations(client, db_session, populated_org):
    db_session.add(Organization(name="Empty Org"))
    db_session.commit()

    response = client.post("/cron/segmentation", headers={"Authorization": "Bearer test-cron-secret"})
    assert response.status_code == 200
    data = response.json()
    assert data["organizations_processed"] == 2
    assert data["total_customers_processed"] == 2
    assert data["total_failed"] == 0
    assert all(r["success"] for r in data["results"])


def test_dashboard(client, populated_org):
    response = client.get(f"/organizations/{populated_org.id}/dashboard")
    assert response.status_code == 200
    assert "No segments found" in response.text


def test_interactive_plot_empty(client, populated_org):
    response = client.get(f"/visualization/interactive?organization_id={populated_org.id}")
    assert response.status_code == 200
    assert "No segmented customers available" in response.text


def test_plot_png(client, populated_org):
    client.post(f"/organizations/{populated_org.id}/segmentation/recalculate")
    response = client.get(f"/visualization/plot?organization_id={populated_org.id}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"


def test_plot_rejects_unknown_type(client, populated_org):
    response = client.get(f"/visualization/plot?organization_id={populated_org.id}&plot_type=pie")
    assert response.status_code == 422
    assert response.json()["status"] == "error"
