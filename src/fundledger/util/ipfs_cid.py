# src/fundledger/util/ipfs_cid.py
from __future__ import annotations

"""Metadata reference validation.

Campaign metadata lives off-ledger; the ledger keeps only a short opaque
reference string (usually an IPFS CID). By default any printable ASCII
string within the length bound is accepted. Deployments that want to pin the
reference format can turn on strict CID checking:
  - CIDv0 (base58btc) starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) starts with "b" and uses a-z2-7.

This is NOT a full multiformats parser.
"""

import re
from dataclasses import dataclass


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafy..., bagy...)
_PRINTABLE_ASCII_RE = re.compile(r"^[\x20-\x7e]+$")


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def validate_metadata_ref(ref: object, *, max_len: int, strict_cid: bool = False) -> CidValidation:
    """Check a campaign metadata reference.

    The value is stored exactly as given; no trimming happens here.
    """
    if not isinstance(ref, str) or not ref:
        return CidValidation(False, "missing_ref", "")
    if len(ref) > int(max_len):
        return CidValidation(False, "ref_too_long", ref)
    if not _PRINTABLE_ASCII_RE.match(ref):
        return CidValidation(False, "ref_not_ascii", ref)
    if strict_cid:
        v = validate_ipfs_cid(ref, max_len=max_len)
        if not v.ok or v.cid != ref:
            return CidValidation(False, v.reason if not v.ok else "invalid_cid_format", ref)
    return CidValidation(True, "ok", ref)
