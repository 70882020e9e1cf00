"""Tests for the ACME client against an in-process fake CA."""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.x509.oid import NameOID

from glinr.certs import ACMEClient, certificate_expiry
from glinr.core.errors import CertificateAuthorityError

BASE = "https://acme.test"
TOKEN = "challenge-token-1"


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _verify_jws(body: dict, jwk: dict) -> None:
    public_key = ec.EllipticCurvePublicNumbers(
        int.from_bytes(_b64decode(jwk["x"]), "big"),
        int.from_bytes(_b64decode(jwk["y"]), "big"),
        ec.SECP256R1(),
    ).public_key()
    raw = _b64decode(body["signature"])
    signature = encode_dss_signature(int.from_bytes(raw[:32], "big"), int.from_bytes(raw[32:], "big"))
    signing_input = f"{body['protected']}.{body['payload']}".encode("ascii")
    public_key.verify(signature, signing_input, ec.ECDSA(hashes.SHA256()))


def _issue_from_csr(csr_der: bytes, not_after: datetime) -> bytes:
    csr = x509.load_der_x509_csr(csr_der)
    ca_key = ec.generate_private_key(ec.SECP256R1())
    cert = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Fake CA")]))
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(ca_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


class FakeACMEServer:
    def __init__(self, webroot):
        self.webroot = webroot
        self.not_after = datetime(2030, 1, 1, tzinfo=UTC)
        self.nonce = 0
        self.authz_status = "pending"
        self.order_status = "pending"
        self.fail_challenge = False
        self.key_authorization: str | None = None
        self.csr_names: list[str] = []
        self.cert_pem: bytes | None = None
        self.account_jwk: dict | None = None
        self.kids: list[str] = []

    def _reply(self, status: int, body=None, **headers) -> httpx.Response:
        self.nonce += 1
        headers["Replay-Nonce"] = f"nonce-{self.nonce}"
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def _order(self) -> dict:
        order = {
            "status": self.order_status,
            "authorizations": [f"{BASE}/authz/1"],
            "finalize": f"{BASE}/finalize/1",
        }
        if self.order_status == "valid":
            order["certificate"] = f"{BASE}/cert/1"
        return order

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/directory":
            return httpx.Response(
                200,
                json={
                    "newNonce": f"{BASE}/new-nonce",
                    "newAccount": f"{BASE}/new-account",
                    "newOrder": f"{BASE}/new-order",
                },
            )
        if path == "/new-nonce":
            return self._reply(200)

        body = json.loads(request.content)
        protected = json.loads(_b64decode(body["protected"]))
        payload = json.loads(_b64decode(body["payload"])) if body["payload"] else None
        assert protected["url"] == str(request.url)

        if path == "/new-account":
            self.account_jwk = protected["jwk"]
            _verify_jws(body, protected["jwk"])
            return self._reply(201, {"status": "valid"}, Location=f"{BASE}/acct/1")

        self.kids.append(protected["kid"])
        if path == "/new-order":
            assert payload["identifiers"][0]["type"] == "dns"
            return self._reply(201, self._order(), Location=f"{BASE}/order/1")
        if path == "/authz/1":
            challenge = {"type": "http-01", "url": f"{BASE}/chall/1", "token": TOKEN}
            if self.authz_status == "invalid":
                challenge["error"] = {"detail": "connection refused"}
            return self._reply(200, {"status": self.authz_status, "challenges": [challenge]})
        if path == "/chall/1":
            token_file = self.webroot / ".well-known" / "acme-challenge" / TOKEN
            self.key_authorization = token_file.read_text()
            if self.fail_challenge:
                self.authz_status = "invalid"
            else:
                self.authz_status = "valid"
                self.order_status = "ready"
            return self._reply(200, {"status": "processing"})
        if path == "/order/1":
            return self._reply(200, self._order())
        if path == "/finalize/1":
            csr_der = _b64decode(payload["csr"])
            csr = x509.load_der_x509_csr(csr_der)
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            self.csr_names = san.value.get_values_for_type(x509.DNSName)
            self.cert_pem = _issue_from_csr(csr_der, self.not_after)
            self.order_status = "valid"
            return self._reply(200, self._order())
        if path == "/cert/1":
            self.nonce += 1
            return httpx.Response(
                200,
                content=self.cert_pem,
                headers={"Content-Type": "application/pem-certificate-chain"},
            )
        return self._reply(404, {"type": "urn:ietf:params:acme:error:malformed", "detail": "not found"})


@pytest.fixture
def server(tmp_path):
    return FakeACMEServer(tmp_path / "webroot")


@pytest.fixture
def client(tmp_path, server):
    return ACMEClient(
        directory_url=f"{BASE}/directory",
        certs_dir=tmp_path / "certs",
        webroot=tmp_path / "webroot",
        poll_interval=0,
        poll_attempts=3,
        transport=httpx.MockTransport(server.handler),
    )


class TestACMEClient:
    @pytest.mark.asyncio
    async def test_issue_certificate(self, client, server, tmp_path):
        issued = await client.issue_certificate("app.example.com", "ops@example.com")

        assert issued.domain == "app.example.com"
        assert issued.expires_at == server.not_after
        version_dir = Path(issued.cert_path).parent
        assert version_dir.parent == tmp_path / "certs" / "app.example.com"
        assert Path(issued.key_path) == version_dir / "privkey.pem"
        assert Path(issued.key_path).stat().st_mode & 0o777 == 0o600
        assert certificate_expiry(Path(issued.cert_path).read_bytes()) == server.not_after
        assert server.csr_names == ["app.example.com"]

    @pytest.mark.asyncio
    async def test_key_authorization_and_cleanup(self, client, server, tmp_path):
        await client.issue_certificate("app.example.com", "ops@example.com")

        assert server.key_authorization.startswith(f"{TOKEN}.")
        assert server.key_authorization.split(".", 1)[1] == client._thumbprint()
        assert not (tmp_path / "webroot" / ".well-known" / "acme-challenge" / TOKEN).exists()

    @pytest.mark.asyncio
    async def test_requests_after_registration_use_kid(self, client, server):
        await client.issue_certificate("app.example.com", "ops@example.com")

        assert server.kids and set(server.kids) == {f"{BASE}/acct/1"}

    @pytest.mark.asyncio
    async def test_account_key_is_reused(self, client, server, tmp_path):
        await client.issue_certificate("app.example.com", "ops@example.com")
        first_jwk = server.account_jwk

        fresh = ACMEClient(
            directory_url=f"{BASE}/directory",
            certs_dir=tmp_path / "certs",
            webroot=tmp_path / "webroot",
            poll_interval=0,
            transport=httpx.MockTransport(server.handler),
        )
        server.authz_status = "pending"
        server.order_status = "pending"
        await fresh.issue_certificate("app.example.com", "ops@example.com")

        assert server.account_jwk == first_jwk
        assert (tmp_path / "certs" / "account_key.pem").exists()

    @pytest.mark.asyncio
    async def test_invalid_challenge(self, client, server, tmp_path):
        server.fail_challenge = True

        with pytest.raises(CertificateAuthorityError, match="invalid: connection refused"):
            await client.issue_certificate("app.example.com", "ops@example.com")

        assert not (tmp_path / "certs" / "app.example.com").exists()

    @pytest.mark.asyncio
    async def test_reissue_writes_new_pair(self, client, server):
        first = await client.issue_certificate("app.example.com", "ops@example.com")
        first_key = Path(first.key_path).read_bytes()
        server.authz_status = "pending"
        server.order_status = "pending"

        second = await client.issue_certificate("app.example.com", "ops@example.com")

        assert second.cert_path != first.cert_path
        assert second.key_path != first.key_path
        assert Path(first.key_path).read_bytes() == first_key
        assert Path(second.key_path).read_bytes() != first_key

    @pytest.mark.asyncio
    async def test_old_versions_are_pruned(self, client, server, tmp_path):
        client.keep_versions = 2
        paths = []
        for _ in range(3):
            server.authz_status = "pending"
            server.order_status = "pending"
            issued = await client.issue_certificate("app.example.com", "ops@example.com")
            paths.append(Path(issued.cert_path).parent)

        remaining = sorted(p for p in (tmp_path / "certs" / "app.example.com").iterdir())
        assert remaining == paths[1:]

    @pytest.mark.asyncio
    async def test_malformed_response(self, tmp_path):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        client = ACMEClient(
            directory_url=f"{BASE}/directory",
            certs_dir=tmp_path / "certs",
            webroot=tmp_path / "webroot",
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(CertificateAuthorityError, match="Malformed ACME response"):
            await client.issue_certificate("app.example.com", "ops@example.com")

    @pytest.mark.asyncio
    async def test_directory_unavailable(self, tmp_path):
        def handler(request):
            return httpx.Response(503, json={"detail": "maintenance"})

        client = ACMEClient(
            directory_url=f"{BASE}/directory",
            certs_dir=tmp_path / "certs",
            webroot=tmp_path / "webroot",
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(CertificateAuthorityError, match="maintenance"):
            await client.issue_certificate("app.example.com", "ops@example.com")

    @pytest.mark.asyncio
    async def test_transport_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ACMEClient(
            directory_url=f"{BASE}/directory",
            certs_dir=tmp_path / "certs",
            webroot=tmp_path / "webroot",
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(CertificateAuthorityError, match="ACME request failed"):
            await client.issue_certificate("app.example.com", "ops@example.com")


class TestCertificateExpiry:
    def test_reads_not_after(self):
        key = ec.generate_private_key(ec.SECP256R1())
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")]))
            .sign(key, hashes.SHA256())
        )
        not_after = datetime(2031, 6, 1, 12, 0, tzinfo=UTC)
        pem = _issue_from_csr(csr.public_bytes(serialization.Encoding.DER), not_after)

        assert certificate_expiry(pem) == not_after

