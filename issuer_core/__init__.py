"""
Issuer Core Package
===================
Shared reconciliation engine for certificate-authority integrations.

An integration supplies two callbacks, ``check`` and ``sign``; this package
runs them as a control loop against a live object store.

Provides:
- Ready condition ledger and error taxonomy
- Retry timing, backoff and escalation
- Cross-reconciler event registry
- Trust-anchor, request and combined controllers
- Pluggable object store (in-memory default, Kubernetes API adapter)
"""

from issuer_core.combined_controller import CombinedController
from issuer_core.errors import IssuerError, PendingError, PermanentError
from issuer_core.signer import PEMBundle

__all__ = [
    "CombinedController",
    "IssuerError",
    "PendingError",
    "PermanentError",
    "PEMBundle",
]
