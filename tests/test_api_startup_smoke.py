from fastapi.testclient import TestClient


REQUIRED_ROUTES = {
    "/api/kiosk/{restaurant_id}/items/{item_id}",
    "/api/kiosk/{restaurant_id}/items/{item_id}/validate",
    "/api/kiosk/{restaurant_id}/items/{item_id}/price",
    "/api/kiosk/{restaurant_id}/carts",
    "/api/kiosk/{restaurant_id}/carts/{session_id}/lines",
    "/api/kiosk/{restaurant_id}/carts/{session_id}/receipt-preview",
    "/api/kiosk/{restaurant_id}/carts/{session_id}/checkout",
    "/api/kiosk/{restaurant_id}/carts/{session_id}/card-payment",
    "/api/kiosk/{restaurant_id}/orders/{order_number}/receipt",
    "/api/kiosk/{restaurant_id}/payment-intents",
    "/api/payment-intents/{intent_id}",
    "/api/payment-intents/{intent_id}/status",
}


def test_api_startup_and_router_registration(monkeypatch):
    from kiosk import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/")
        health_response = client.get("/health")
        docs_response = client.get("/docs")
        openapi_response = client.get("/openapi.json")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert health_response.json() == {"status": "healthy"}
    assert docs_response.status_code == 200
    assert openapi_response.status_code == 200
    assert response.headers.get("X-Request-ID")

    paths = {route.path for route in main.app.routes}
    assert REQUIRED_ROUTES.issubset(paths)
