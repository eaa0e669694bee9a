import requests

def test_lookup_registration_number():
    base_url = "http://localhost:3000"
    headers = {"Accept": "application/json"}
    timeout = 420  # first lookup may wait for the register download

    # Missing key is a client error
    try:
        response = requests.get(f"{base_url}/api/lookup", headers=headers, timeout=30)
    except requests.RequestException as e:
        assert False, f"Request failed: {e}"
    assert response.status_code == 400, f"Expected 400 for missing key, got {response.status_code}"
    assert response.json().get("ok") is False

    try:
        response = requests.get(
            f"{base_url}/api/lookup", params={"key": "DE0000000000000"}, headers=headers, timeout=timeout
        )
    except requests.RequestException as e:
        assert False, f"Request failed: {e}"

    if response.status_code == 503:
        # No cache could be built (upstream unreachable or token missing)
        assert response.json().get("ok") is False
        return

    assert response.status_code == 200, f"Expected status code 200, got {response.status_code}"
    data = response.json()
    assert data["key"] == "DE0000000000000"
    assert data["status"] in ("registered", "not_found"), f"Unexpected status {data['status']}"
    assert isinstance(data["registered"], bool)
    assert data["registered"] == (data["status"] == "registered")
    assert "checkedAt" in data

test_lookup_registration_number()
