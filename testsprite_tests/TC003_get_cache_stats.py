import requests

def test_get_cache_stats():
    base_url = "http://localhost:3000"
    url = f"{base_url}/api/stats"
    timeout = 30

    try:
        response = requests.get(url, headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as e:
        assert False, f"Request to {url} failed: {e}"

    assert response.status_code == 200, f"Expected status code 200, got {response.status_code}"
    data = response.json()

    expected_keys = {
        "entries": int,
        "isLoading": bool,
        "ttlHours": (int, float),
        "apiKeyRequired": bool,
    }
    for key, expected_type in expected_keys.items():
        assert key in data, f"Response JSON missing key: {key}"
        assert isinstance(data[key], expected_type), f"Key '{key}' has unexpected type {type(data[key]).__name__}"

    for key in ("lastUpdate", "lastUpdateISO", "ageMinutes", "lastRefresh"):
        assert key in data, f"Response JSON missing key: {key}"

test_get_cache_stats()
