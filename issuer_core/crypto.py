"""
issuer_core.crypto
------------------
X.509 primitives used by the reference signer and the tests:

- Ed25519 key generation and PEM (de)serialisation
- self-signed CA generation
- CSR generation and verification
- CSR signing into a PEMBundle
- certificate fingerprints

Everything is PEM in, PEM out; callers never handle key objects.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import NameOID

from issuer_core.signer import PEMBundle

DEFAULT_CA_VALIDITY = timedelta(days=365)
DEFAULT_LEAF_VALIDITY = timedelta(days=90)
# allow for clock skew between the signer and the relying party
BACKDATE = timedelta(minutes=5)


# --------- keys ----------
def ed25519_generate_pem() -> bytes:
    sk = ed25519.Ed25519PrivateKey.generate()
    return sk.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )

def load_private_key(pem: bytes) -> ed25519.Ed25519PrivateKey:
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, ed25519.Ed25519PrivateKey):
        raise ValueError(f"expected an Ed25519 private key, got {type(key).__name__}")
    return key


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

def _pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


# --------- CA ----------
def generate_ca(common_name: str = "issuer-core CA",
                validity: timedelta = DEFAULT_CA_VALIDITY,
                now: Optional[datetime] = None) -> Tuple[bytes, bytes]:
    """Return (certificate_pem, private_key_pem) of a fresh self-signed CA."""
    now = now or datetime.now(timezone.utc)
    key_pem = ed25519_generate_pem()
    sk = load_private_key(key_pem)
    name = _name(common_name)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(sk.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .sign(sk, algorithm=None)
    )
    return _pem(cert), key_pem


def load_ca(cert_pem: bytes, key_pem: bytes) -> Tuple[x509.Certificate, ed25519.Ed25519PrivateKey]:
    """Parse CA material and make sure the key belongs to the certificate."""
    cert = x509.load_pem_x509_certificate(cert_pem)
    key = load_private_key(key_pem)
    cert_pub = cert.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    key_pub = key.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    if cert_pub != key_pub:
        raise ValueError("CA private key does not match the CA certificate")
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        raise ValueError("CA certificate has no basicConstraints extension") from None
    if not bc.ca:
        raise ValueError("certificate is not a CA")
    return cert, key


# --------- CSR ----------
def generate_csr(common_name: str, dns_names: Optional[List[str]] = None,
                 key_pem: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """Return (csr_pem, private_key_pem)."""
    key_pem = key_pem or ed25519_generate_pem()
    sk = load_private_key(key_pem)
    builder = x509.CertificateSigningRequestBuilder().subject_name(_name(common_name))
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in dns_names]), critical=False
        )
    csr = builder.sign(sk, algorithm=None)
    return csr.public_bytes(serialization.Encoding.PEM), key_pem


def load_csr(csr_pem: bytes) -> x509.CertificateSigningRequest:
    csr = x509.load_pem_x509_csr(csr_pem)
    if not csr.is_signature_valid:
        raise ValueError("CSR signature is invalid")
    return csr


def sign_csr(csr_pem: bytes, ca_cert_pem: bytes, ca_key_pem: bytes,
             validity: Optional[timedelta] = None,
             now: Optional[datetime] = None) -> PEMBundle:
    """Issue a leaf certificate for csr_pem. Validity is capped by the CA's own expiry."""
    now = now or datetime.now(timezone.utc)
    csr = load_csr(csr_pem)
    ca_cert, ca_key = load_ca(ca_cert_pem, ca_key_pem)

    not_after = now + (validity or DEFAULT_LEAF_VALIDITY)
    if not_after > ca_cert.not_valid_after_utc:
        not_after = ca_cert.not_valid_after_utc

    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca_cert.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
    )
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        builder = builder.add_extension(san.value, critical=san.critical)
    except x509.ExtensionNotFound:
        pass

    leaf = builder.sign(ca_key, algorithm=None)
    return PEMBundle(chain_pem=_pem(leaf), ca_pem=ca_cert_pem)


def certificate_fingerprint(cert_pem: bytes) -> str:
    """
    Hex SHA-256 fingerprint of a PEM certificate, truncated to 32 chars.
    Used in events and logs to identify what was issued.
    """
    cert = x509.load_pem_x509_certificate(cert_pem)
    return cert.fingerprint(hashes.SHA256()).hex()[:32]
