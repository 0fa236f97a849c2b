import httpx
import pytest

from price_insights.core.errors import AnalyticsServiceError, AnalyticsTransportError
from price_insights.main import app
from price_insights.schemas.query import ResultSet
from price_insights.services.analytics_client import get_analytics_client
from price_insights.services.pre_aggregation_catalog import CATALOG, CATALOG_VERSION


class FakeAnalyticsClient:
    def __init__(self, rows=None, exc=None):
        self.rows = rows or []
        self.exc = exc
        self.queries = []

    async def load(self, query, on_progress=None):
        self.queries.append(query)
        if self.exc is not None:
            raise self.exc
        return ResultSet(rows=self.rows)


@pytest.fixture
def fake_client():
    fake = FakeAnalyticsClient()
    app.dependency_overrides[get_analytics_client] = lambda: fake
    yield fake
    app.dependency_overrides.clear()


@pytest.fixture
async def api():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.anyio
async def test_healthz(api):
    response = await api.get("/api/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]


@pytest.mark.anyio
async def test_compile_returns_payload_dep_keys_and_family(api):
    response = await api.post(
        "/api/queries/compile",
        json={
            "measures": ["averageRetailPrice"],
            "filters": {"retailers": ["Kaufland"], "date_range": ["2025-10-01", "2025-10-07"]},
            "extra_dimensions": ["retailer_name"],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["query"]["dimensions"] == ["prices.retailer_name"]
    assert body["query"]["filters"] == [
        {"member": "prices.retailer_name", "operator": "equals", "values": ["Kaufland"]}
    ]
    assert body["dep_keys"] == ["Kaufland", "", "", "", "2025-10-01..2025-10-07", "day"]
    assert body["expected_pre_aggregation"] == "retailer_only_filtered"


@pytest.mark.anyio
async def test_compile_pattern(api):
    response = await api.post("/api/queries/compile", json={"pattern": "stats_cards"})

    assert response.status_code == 200
    assert response.json()["query"]["measures"] == ["prices.minRetailPrice", "prices.maxRetailPrice"]


@pytest.mark.anyio
async def test_compile_rejects_inverted_range(api):
    response = await api.post(
        "/api/queries/compile",
        json={"measures": ["averageRetailPrice"], "filters": {"date_range": ["2025-10-07", "2025-10-01"]}},
    )

    assert response.status_code == 422
    assert "date_range" in response.json()["detail"]


@pytest.mark.anyio
async def test_compile_rejects_unknown_pattern(api):
    response = await api.post("/api/queries/compile", json={"pattern": "heatmap"})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_analyze_compiled_query(api):
    response = await api.post("/api/queries/analyze", json={"measures": ["averageRetailPrice", "averagePromoPrice"]})

    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["matching_definitions"] == ["main"]
    assert analysis["is_additive"] is False


@pytest.mark.anyio
async def test_analyze_raw_query(api):
    raw = {
        "measures": ["prices.totalRetailPrice"],
        "timeDimensions": [{"dimension": "prices.price_date", "granularity": "month", "dateRange": "Last 3 months"}],
    }
    response = await api.post("/api/queries/analyze", json={"query": raw})

    assert response.status_code == 200
    body = response.json()
    assert body["query"]["timeDimensions"][0]["granularity"] == "month"
    assert body["analysis"]["is_additive"] is True
    assert "main_fast" in body["analysis"]["matching_definitions"]


@pytest.mark.anyio
async def test_analyze_malformed_raw_query(api):
    response = await api.post("/api/queries/analyze", json={"query": {"filters": [{"operator": "equals"}]}})

    assert response.status_code == 422
    assert response.json()["detail"].startswith("Malformed query")


@pytest.mark.anyio
async def test_load_returns_rows(api, fake_client):
    fake_client.rows = [{"prices.averageRetailPrice": "2.49"}]

    response = await api.post(
        "/api/queries/load",
        json={"measures": ["averageRetailPrice"], "filters": {"retailers": ["Kaufland"]}},
    )

    assert response.status_code == 200
    assert response.json()["result"]["rows"] == [{"prices.averageRetailPrice": "2.49"}]
    assert fake_client.queries[0].filter_members == ("prices.retailer_name",)


@pytest.mark.anyio
async def test_load_maps_service_rejection_to_502(api, fake_client):
    fake_client.exc = AnalyticsServiceError("Unknown member", status_code=400)

    response = await api.post("/api/queries/load", json={"measures": ["averageRetailPrice"]})

    assert response.status_code == 502
    assert "Unknown member" in response.json()["detail"]


@pytest.mark.anyio
async def test_load_maps_unreachable_service_to_503(api, fake_client):
    fake_client.exc = AnalyticsTransportError("ConnectError")

    response = await api.post("/api/queries/load", json={"measures": ["averageRetailPrice"]})

    assert response.status_code == 503
    assert response.json()["detail"] == "Analytics service not reachable. Please retry shortly."


@pytest.mark.anyio
async def test_load_compile_error_never_reaches_service(api, fake_client):
    response = await api.post("/api/queries/load", json={"measures": []})

    assert response.status_code == 422
    assert fake_client.queries == []


@pytest.mark.anyio
async def test_catalog_endpoints(api):
    listing = (await api.get("/api/pre-aggregations")).json()
    assert listing["version"] == CATALOG_VERSION
    assert len(listing["definitions"]) == len(CATALOG)

    main = await api.get("/api/pre-aggregations/main")
    assert main.status_code == 200
    assert main.json()["time_dimension"] == "prices.price_date"

    missing = await api.get("/api/pre-aggregations/nope")
    assert missing.status_code == 404

    overlaps = (await api.get("/api/pre-aggregations/overlaps")).json()
    assert {"covered": "min_max_only", "covering": "stats_cards"} in overlaps

    checklist = (await api.get("/api/pre-aggregations/checklist")).json()
    assert checklist


@pytest.mark.anyio
async def test_filter_values_are_cached(api, fake_client):
    fake_client.rows = [
        {"stores.retailer_name": "Lidl"},
        {"stores.retailer_name": "Billa"},
        {"stores.retailer_name": None},
    ]

    first = await api.get("/api/filters/retailers/values")
    second = await api.get("/api/filters/retailers/values")

    assert first.status_code == 200
    assert first.json() == {
        "field": "retailers",
        "dimension": "stores.retailer_name",
        "values": ["Billa", "Lidl"],
    }
    assert second.json() == first.json()
    assert len(fake_client.queries) == 1


@pytest.mark.anyio
async def test_filter_values_unknown_field(api, fake_client):
    response = await api.get("/api/filters/brands/values")

    assert response.status_code == 422


@pytest.mark.anyio
async def test_analyze_rejects_malformed_date_range(api):
    raw = {
        "measures": ["prices.averageRetailPrice"],
        "timeDimensions": [{"dimension": "prices.price_date", "granularity": "week", "dateRange": ["2025-1-5", "2025-02-01"]}],
    }
    response = await api.post("/api/queries/analyze", json={"query": raw})

    assert response.status_code == 422
    assert "ISO dates" in response.json()["detail"]
