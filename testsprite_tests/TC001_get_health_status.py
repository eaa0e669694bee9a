import requests

def test_get_health_status():
    base_url = "http://localhost:3000"
    url = f"{base_url}/healthz"
    headers = {
        "Accept": "application/json"
    }
    timeout = 30

    try:
        response = requests.get(url, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        assert False, f"Request to {url} failed: {e}"

    assert response.status_code == 200, f"Expected status code 200, got {response.status_code}"

    try:
        data = response.json()
    except ValueError:
        assert False, "Response is not valid JSON"

    assert data.get("ok") is True, "Health check did not report ok"
    assert isinstance(data.get("uptime"), (int, float)), "uptime missing or not a number"
    cache = data.get("cache")
    assert isinstance(cache, dict), "cache block missing"
    assert isinstance(cache.get("entries"), int), "cache.entries missing or not an int"
    assert isinstance(cache.get("age"), str), "cache.age missing or not a string"

test_get_health_status()
