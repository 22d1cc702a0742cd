from starlette.requests import Request

from security.ip_utils import get_client_ip, load_trusted_proxies


def _request(headers=None, client=("192.0.2.1", 54321)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_first_forwarded_for_address_wins():
    request = _request({"X-Forwarded-For": " 203.0.113.5 , 10.0.0.1", "X-Real-IP": "198.51.100.9"})
    assert get_client_ip(request) == "203.0.113.5"


def test_real_ip_used_when_no_forwarded_for():
    assert get_client_ip(_request({"X-Real-IP": " 198.51.100.9 "})) == "198.51.100.9"


def test_empty_forwarded_for_falls_through():
    assert get_client_ip(_request({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "198.51.100.9"})) == "198.51.100.9"


def test_peer_address_without_port():
    assert get_client_ip(_request()) == "192.0.2.1"


def test_unknown_when_no_client():
    assert get_client_ip(_request(client=None)) == "unknown"


def test_headers_ignored_from_untrusted_peer():
    request = _request({"X-Forwarded-For": "203.0.113.5"}, client=("192.0.2.1", 1))
    assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "192.0.2.1"


def test_headers_honored_from_trusted_proxy():
    request = _request({"X-Forwarded-For": "203.0.113.5"}, client=("10.0.0.2", 1))
    assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "203.0.113.5"


def test_load_trusted_proxies(monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXIES", "10.0.0.2, 127.0.0.1,,")
    assert load_trusted_proxies() == {"10.0.0.2", "127.0.0.1"}
    monkeypatch.delenv("TRUSTED_PROXIES")
    assert load_trusted_proxies() == set()
