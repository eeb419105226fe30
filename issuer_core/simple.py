"""
issuer_core.simple
------------------
Reference integration: a trust anchor that carries its CA inline.

    spec:
      caCertificate: <PEM>
      caPrivateKey:  <PEM, Ed25519>

check() validates the CA material; sign() issues a leaf for the request's
CSR. Broken CA material found while signing is reported as an IssuerError
so the trust anchor, not the request, goes NotReady.
"""

from __future__ import annotations
from datetime import timedelta
from typing import Optional, Tuple

from issuer_core import crypto
from issuer_core.errors import IssuerError, PermanentError
from issuer_core.logger import get_logger
from issuer_core.reconcile import Context
from issuer_core.signer import PEMBundle, Signer
from issuer_core.storage.models import IssuerObject, RequestObject
from issuer_core.utils import Clock

log = get_logger("Issuer.Simple")

SPEC_CA_CERTIFICATE = "caCertificate"
SPEC_CA_PRIVATE_KEY = "caPrivateKey"


class SimpleSigner(Signer):
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()

    def _ca_material(self, issuer: IssuerObject) -> Tuple[bytes, bytes]:
        cert = issuer.spec.get(SPEC_CA_CERTIFICATE)
        key = issuer.spec.get(SPEC_CA_PRIVATE_KEY)
        if not cert or not key:
            raise PermanentError(
                f"spec.{SPEC_CA_CERTIFICATE} and spec.{SPEC_CA_PRIVATE_KEY} are required"
            )
        return cert.encode("utf-8"), key.encode("utf-8")

    def _validate(self, cert_pem: bytes, key_pem: bytes) -> None:
        try:
            cert, _ = crypto.load_ca(cert_pem, key_pem)
        except ValueError as e:
            raise PermanentError(f"invalid CA material: {e}") from e
        if cert.not_valid_after_utc <= self.clock.now():
            raise PermanentError(f"CA certificate expired at {cert.not_valid_after_utc.isoformat()}")

    def check(self, ctx: Context, issuer: IssuerObject) -> None:
        ctx.raise_if_done()
        cert_pem, key_pem = self._ca_material(issuer)
        self._validate(cert_pem, key_pem)
        log.debug(f"[SIMPLE] CA for {issuer.kind} {issuer.key} is valid")

    def sign(self, ctx: Context, request: RequestObject, issuer: IssuerObject) -> PEMBundle:
        ctx.raise_if_done()
        try:
            cert_pem, key_pem = self._ca_material(issuer)
            self._validate(cert_pem, key_pem)
        except PermanentError as e:
            raise IssuerError(e) from e

        try:
            crypto.load_csr(request.csr)
        except ValueError as e:
            raise PermanentError(f"invalid CSR: {e}") from e

        validity = timedelta(seconds=request.duration) if request.duration else None
        bundle = crypto.sign_csr(request.csr, cert_pem, key_pem, validity=validity, now=self.clock.now())
        log.info(
            f"[SIMPLE] issued {crypto.certificate_fingerprint(bundle.chain_pem)} "
            f"for {request.kind} {request.key}"
        )
        return bundle
