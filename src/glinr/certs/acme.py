"""ACME v2 (RFC 8555) client using HTTP-01 challenges.

The key authorization for each challenge is written below the webroot at
``.well-known/acme-challenge/<token>``; the generated nginx configuration
serves that directory on every port-80 server block.

Every issuance gets its own directory, so a renewal never rewrites files
the proxy is serving and the key and chain always change as a pair:

    <certs_dir>/<domain>/<issued-at>/fullchain.pem
    <certs_dir>/<domain>/<issued-at>/privkey.pem

Only the newest ``keep_versions`` directories of a domain are kept.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from glinr.core.config import LETSENCRYPT_DIRECTORY
from glinr.core.errors import CertificateAuthorityError
from glinr.core.files import atomic_write
from glinr.interfaces import IssuedCertificate

logger = structlog.get_logger()

CHALLENGE_PATH = ".well-known/acme-challenge"


def _b64url(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _error_detail(response: httpx.Response) -> str:
    try:
        problem = response.json()
    except ValueError:
        return response.text
    detail = problem.get("detail", "")
    kind = problem.get("type", "")
    if detail:
        return f"{detail} ({kind})" if kind else detail
    return response.text


def certificate_expiry(cert_pem: bytes) -> datetime:
    """Return the notAfter of the first certificate in a PEM bundle (UTC)."""
    cert = x509.load_pem_x509_certificate(cert_pem)
    return cert.not_valid_after_utc.astimezone(UTC)


class ACMEClient:
    """Lightweight ACME v2 client.

    Args:
        directory_url: ACME directory URL.
        certs_dir: Where the account key and issued certificates are stored.
        webroot: Directory served at /.well-known/acme-challenge/.
        poll_interval: Delay between order/authorization polls (seconds).
        poll_attempts: Polls before an order counts as stuck.
        keep_versions: Issuance directories kept per domain.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        directory_url: str = LETSENCRYPT_DIRECTORY,
        certs_dir: str | Path = "/var/lib/glinr/certs",
        webroot: str | Path = "/var/lib/glinr/acme-http01",
        poll_interval: float = 2.0,
        poll_attempts: int = 30,
        keep_versions: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.directory_url = directory_url
        self.certs_dir = Path(certs_dir)
        self.webroot = Path(webroot)
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self.keep_versions = max(keep_versions, 2)
        self._transport = transport
        self._lock = asyncio.Lock()

        self._http: httpx.AsyncClient | None = None
        self._directory: dict[str, Any] = {}
        self._nonce: str | None = None
        self._account_key: ec.EllipticCurvePrivateKey | None = None
        self._account_url: str | None = None

    @property
    def account_key_path(self) -> Path:
        return self.certs_dir / "account_key.pem"

    async def issue_certificate(self, domain: str, email: str) -> IssuedCertificate:
        """Run a complete order for ``domain`` and store the result.

        Orders through one client are serialised; the ACME account and nonce
        are shared state.

        Raises:
            CertificateAuthorityError: If any ACME step fails.
        """
        async with self._lock:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as http:
                self._http = http
                try:
                    return await self._issue(domain, email)
                except httpx.HTTPError as e:
                    raise CertificateAuthorityError(f"ACME request failed: {e}") from e
                except (KeyError, ValueError) as e:
                    raise CertificateAuthorityError(f"Malformed ACME response: {e!r}") from e
                finally:
                    self._http = None
                    self._nonce = None

    async def _issue(self, domain: str, email: str) -> IssuedCertificate:
        await self._fetch_directory()
        await self._ensure_account(email)

        order_url, order = await self._new_order(domain)
        logger.info("ACME order created", domain=domain, order=order_url)

        for auth_url in order.get("authorizations", []):
            await self._complete_authorization(auth_url)

        order = await self._poll(order_url, ready={"ready"})
        cert_pem, key_pem = await self._finalize(order_url, order, domain)

        version_dir = self.certs_dir / domain / datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        cert_path = version_dir / "fullchain.pem"
        key_path = version_dir / "privkey.pem"
        await asyncio.to_thread(atomic_write, key_path, key_pem, 0o600)
        await asyncio.to_thread(atomic_write, cert_path, cert_pem, 0o644)
        await asyncio.to_thread(self._prune_versions, domain)

        expires_at = certificate_expiry(cert_pem)
        logger.info("ACME certificate stored", domain=domain, expires_at=expires_at.isoformat())
        return IssuedCertificate(
            domain=domain,
            expires_at=expires_at,
            cert_path=str(cert_path),
            key_path=str(key_path),
        )

    def _prune_versions(self, domain: str) -> None:
        versions = sorted(p for p in (self.certs_dir / domain).iterdir() if p.is_dir())
        for stale in versions[: -self.keep_versions]:
            try:
                shutil.rmtree(stale)
            except OSError as e:
                logger.warning("Failed to remove old certificate", path=str(stale), error=str(e))
            else:
                logger.debug("Removed old certificate", path=str(stale))

    # Protocol plumbing

    async def _fetch_directory(self) -> None:
        assert self._http is not None
        response = await self._http.get(self.directory_url)
        if response.status_code != 200:
            raise CertificateAuthorityError(
                f"Failed to fetch ACME directory: {_error_detail(response)}"
            )
        self._directory = response.json()

    async def _get_nonce(self) -> str:
        assert self._http is not None
        if self._nonce:
            nonce, self._nonce = self._nonce, None
            return nonce
        response = await self._http.head(self._directory["newNonce"])
        nonce = response.headers.get("Replay-Nonce")
        if not nonce:
            raise CertificateAuthorityError("Failed to obtain ACME nonce")
        return nonce

    def _load_or_create_account_key(self) -> ec.EllipticCurvePrivateKey:
        if self.account_key_path.exists():
            key = serialization.load_pem_private_key(
                self.account_key_path.read_bytes(), password=None
            )
            if not isinstance(key, ec.EllipticCurvePrivateKey):
                raise CertificateAuthorityError("ACME account key is not an EC key")
            return key

        key = ec.generate_private_key(ec.SECP256R1())
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        atomic_write(self.account_key_path, pem, 0o600)
        logger.info("Created new ACME account key", path=str(self.account_key_path))
        return key

    def _jwk(self) -> dict[str, str]:
        assert self._account_key is not None
        numbers = self._account_key.public_key().public_numbers()
        return {
            "crv": "P-256",
            "kty": "EC",
            "x": _b64url(numbers.x.to_bytes(32, "big")),
            "y": _b64url(numbers.y.to_bytes(32, "big")),
        }

    def _thumbprint(self) -> str:
        """JWK thumbprint (RFC 7638)."""
        canonical = json.dumps(self._jwk(), separators=(",", ":"), sort_keys=True)
        return _b64url(hashlib.sha256(canonical.encode("utf-8")).digest())

    def _sign(self, data: bytes) -> bytes:
        assert self._account_key is not None
        r, s = decode_dss_signature(self._account_key.sign(data, ec.ECDSA(hashes.SHA256())))
        return r.to_bytes(32, "big") + s.to_bytes(32, "big")

    async def _post(self, url: str, payload: dict[str, Any] | None) -> httpx.Response:
        """Signed JWS POST; ``payload=None`` is a POST-as-GET."""
        assert self._http is not None
        protected: dict[str, Any] = {"alg": "ES256", "nonce": await self._get_nonce(), "url": url}
        if self._account_url:
            protected["kid"] = self._account_url
        else:
            protected["jwk"] = self._jwk()

        protected_b64 = _b64url(json.dumps(protected).encode("utf-8"))
        payload_b64 = "" if payload is None else _b64url(json.dumps(payload).encode("utf-8"))
        signature = self._sign(f"{protected_b64}.{payload_b64}".encode("ascii"))

        response = await self._http.post(
            url,
            json={"protected": protected_b64, "payload": payload_b64, "signature": _b64url(signature)},
            headers={"Content-Type": "application/jose+json"},
        )
        if "Replay-Nonce" in response.headers:
            self._nonce = response.headers["Replay-Nonce"]
        return response

    async def _ensure_account(self, email: str) -> None:
        if self._account_key is None:
            self._account_key = await asyncio.to_thread(self._load_or_create_account_key)
        if self._account_url:
            return

        response = await self._post(
            self._directory["newAccount"],
            {"termsOfServiceAgreed": True, "contact": [f"mailto:{email}"]},
        )
        if response.status_code not in (200, 201):
            raise CertificateAuthorityError(
                f"Failed to register ACME account: {_error_detail(response)}"
            )
        self._account_url = response.headers.get("Location")
        if not self._account_url:
            raise CertificateAuthorityError("No account URL in ACME response")
        logger.info("ACME account ready", account=self._account_url)

    async def _new_order(self, domain: str) -> tuple[str, dict[str, Any]]:
        response = await self._post(
            self._directory["newOrder"],
            {"identifiers": [{"type": "dns", "value": domain}]},
        )
        if response.status_code not in (200, 201):
            raise CertificateAuthorityError(f"Failed to create order: {_error_detail(response)}")
        order_url = response.headers.get("Location")
        if not order_url:
            raise CertificateAuthorityError("No order URL in ACME response")
        return order_url, response.json()

    async def _complete_authorization(self, auth_url: str) -> None:
        response = await self._post(auth_url, None)
        if response.status_code != 200:
            raise CertificateAuthorityError(
                f"Failed to get authorization: {_error_detail(response)}"
            )
        authorization = response.json()
        if authorization.get("status") == "valid":
            return

        challenge = next(
            (c for c in authorization.get("challenges", []) if c.get("type") == "http-01"),
            None,
        )
        if challenge is None:
            raise CertificateAuthorityError("No HTTP-01 challenge offered")

        token = challenge["token"]
        token_path = self.webroot / CHALLENGE_PATH / token
        await asyncio.to_thread(
            atomic_write, token_path, f"{token}.{self._thumbprint()}".encode("ascii"), 0o644
        )
        try:
            response = await self._post(challenge["url"], {})
            if response.status_code not in (200, 202):
                raise CertificateAuthorityError(
                    f"Failed to respond to challenge: {_error_detail(response)}"
                )
            await self._poll(auth_url, ready={"valid"})
        finally:
            token_path.unlink(missing_ok=True)

    async def _poll(self, url: str, ready: set[str]) -> dict[str, Any]:
        for _ in range(self.poll_attempts):
            response = await self._post(url, None)
            if response.status_code != 200:
                raise CertificateAuthorityError(f"Failed to poll {url}: {_error_detail(response)}")
            body = response.json()
            status = body.get("status")
            if status in ready:
                return body
            if status in ("invalid", "expired", "revoked", "deactivated"):
                detail = ""
                for item in body.get("challenges", []):
                    if item.get("error"):
                        detail = f": {item['error'].get('detail', '')}"
                        break
                raise CertificateAuthorityError(f"ACME {url} is {status}{detail}")
            await asyncio.sleep(self.poll_interval)
        raise CertificateAuthorityError(f"Timed out waiting for {url}")

    async def _finalize(
        self, order_url: str, order: dict[str, Any], domain: str
    ) -> tuple[bytes, bytes]:
        if order.get("status") != "ready":
            raise CertificateAuthorityError(f"Order for {domain} is {order.get('status')}, not ready")

        domain_key = ec.generate_private_key(ec.SECP256R1())
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
            .sign(domain_key, hashes.SHA256())
        )
        response = await self._post(
            order["finalize"],
            {"csr": _b64url(csr.public_bytes(serialization.Encoding.DER))},
        )
        if response.status_code not in (200, 201):
            raise CertificateAuthorityError(f"Failed to finalize order: {_error_detail(response)}")
        order = response.json()
        if order.get("status") != "valid":
            order = await self._poll(order_url, ready={"valid"})

        cert_url = order.get("certificate")
        if not cert_url:
            raise CertificateAuthorityError("No certificate URL in order")
        response = await self._post(cert_url, None)
        if response.status_code != 200:
            raise CertificateAuthorityError(
                f"Failed to download certificate: {_error_detail(response)}"
            )

        key_pem = domain_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return response.text.encode("utf-8"), key_pem
