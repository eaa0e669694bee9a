import requests

def test_admin_refresh_requires_key():
    base_url = "http://localhost:3000"
    timeout = 30

    stats = requests.get(f"{base_url}/api/stats", timeout=timeout).json()
    if not stats.get("apiKeyRequired"):
        # Without a configured key the endpoint is open; only check the response shape.
        response = requests.post(f"{base_url}/admin/refresh", timeout=timeout)
        assert response.status_code == 200, f"Expected status code 200, got {response.status_code}"
        data = response.json()
        assert isinstance(data.get("started"), bool)
        assert isinstance(data.get("entries"), int)
        return

    response = requests.post(f"{base_url}/admin/refresh", timeout=timeout)
    assert response.status_code == 401, f"Expected 401 without key, got {response.status_code}"
    assert response.json() == {"ok": False, "error": "Invalid API key"}

    response = requests.post(f"{base_url}/admin/refresh", headers={"x-api-key": "wrong-key"}, timeout=timeout)
    assert response.status_code == 401, f"Expected 401 with wrong key, got {response.status_code}"

test_admin_refresh_requires_key()
