"""
issuer_core.signer
------------------
Contracts a CA integration implements.

    check(ctx, issuer) -> None                 raise to report a failure
    sign(ctx, request, issuer) -> PEMBundle    raise to report a failure

Both may block on network calls; they receive the pass Context and should
give up (raise) once ctx.done() is True. Raised errors are classified with
issuer_core.errors.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable

from issuer_core.reconcile import Context
from issuer_core.storage.models import IssuerObject, ObjectKey, RequestObject


@dataclass
class PEMBundle:
    chain_pem: bytes = b""
    ca_pem: bytes = b""


Check = Callable[[Context, IssuerObject], None]
Sign = Callable[[Context, RequestObject, IssuerObject], PEMBundle]

# Optional opt-outs; returning True leaves the object unmanaged.
IgnoreIssuer = Callable[[Context, IssuerObject], bool]
IgnoreRequest = Callable[[Context, RequestObject, str, ObjectKey], bool]


class Signer:
    """Convenience base for integrations that prefer a class over two functions."""

    def check(self, ctx: Context, issuer: IssuerObject) -> None:
        raise NotImplementedError

    def sign(self, ctx: Context, request: RequestObject, issuer: IssuerObject) -> PEMBundle:
        raise NotImplementedError

    def ignore_issuer(self, ctx: Context, issuer: IssuerObject) -> bool:
        return False

    def ignore_request(self, ctx: Context, request: RequestObject, issuer_kind: str,
                       issuer_key: ObjectKey) -> bool:
        return False
