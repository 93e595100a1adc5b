import json

import httpx
import pytest

from app.config import settings
from app.services.provider_service import send_media, send_text


@pytest.fixture
def provider(monkeypatch):
    monkeypatch.setattr(settings, "provider_token", "tok")
    monkeypatch.setattr(settings, "provider_api_url", "https://provider.example/")
    requests = []

    def make_client(status_code=200, body=None):
        def handler(request):
            requests.append(request)
            return httpx.Response(status_code, json=body if body is not None else {"messageid": "3EB0AAA"})

        return httpx.Client(transport=httpx.MockTransport(handler))

    make_client.requests = requests
    return make_client


class TestSendText:
    def test_posts_international_number(self, provider):
        result = send_text("11988887777", "Olá", client=provider())

        assert result.ok is True
        assert result.value == "3EB0AAA"
        request = provider.requests[0]
        assert str(request.url) == "https://provider.example/send/text"
        assert request.headers["token"] == "tok"
        assert json.loads(request.content) == {"number": "5511988887777", "text": "Olá"}

    def test_provider_error(self, provider):
        result = send_text("11988887777", "Olá", client=provider(status_code=500, body={}))
        assert result.ok is False
        assert result.error_code == "provider_error"

    def test_missing_token(self, provider, monkeypatch):
        monkeypatch.setattr(settings, "provider_token", None)
        result = send_text("11988887777", "Olá", client=provider())
        assert result.error_code == "missing_token"
        assert provider.requests == []

    def test_transport_error(self, monkeypatch):
        monkeypatch.setattr(settings, "provider_token", "tok")

        def handler(request):
            raise httpx.ConnectTimeout("timeout", request=request)

        result = send_text("11988887777", "Olá", client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert result.ok is False
        assert result.error_code == "transport_error"

    def test_requires_text(self, provider):
        assert send_text("11988887777", "", client=provider()).error_code == "invalid_request"


class TestSendMedia:
    def test_posts_media_with_caption(self, provider):
        result = send_media(
            "11988887777", media_type="Image", file="https://inbox.test/media/a.jpg", caption="veja", client=provider()
        )

        assert result.ok is True
        payload = json.loads(provider.requests[0].content)
        assert payload == {
            "number": "5511988887777",
            "type": "image",
            "file": "https://inbox.test/media/a.jpg",
            "text": "veja",
        }

    def test_rejects_unknown_type(self, provider):
        result = send_media("11988887777", media_type="hologram", file="x", client=provider())
        assert result.error_code == "invalid_request"
        assert provider.requests == []
