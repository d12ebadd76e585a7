from __future__ import annotations

"""Transaction payload schemas.

Strict shape checks (types + required keys, unknown keys rejected) run at
admission, before a tx reaches apply. They deliberately do not encode domain
rules such as "goal > 0": those belong to apply so that callers see the
ledger's own error codes (InvalidAmount, InvalidMetadataRef, ...).
"""

from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

Json = Dict[str, Any]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


class _TokenModel(_StrictModel):
    token: StrictStr = Field(min_length=1, max_length=256)


class CampaignCreatePayload(_StrictModel):
    metadata_ref: StrictStr
    goal: StrictInt
    duration: StrictInt
    # Binds the campaign to one token up front; otherwise the first donation does.
    token: Optional[StrictStr] = Field(default=None, min_length=1, max_length=256)


class CampaignDonatePayload(_TokenModel):
    campaign_id: StrictInt
    amount: StrictInt


class CampaignClaimPayload(_TokenModel):
    campaign_id: StrictInt


class CampaignRefundPayload(_TokenModel):
    campaign_id: StrictInt


class CampaignMetadataUpdatePayload(_StrictModel):
    campaign_id: StrictInt
    metadata_ref: StrictStr


class CampaignDepositRegisterPayload(_StrictModel):
    campaign_id: StrictInt
    donor: StrictStr = Field(min_length=1, max_length=256)
    amount: StrictInt


class FeesWithdrawPayload(_TokenModel):
    pass


_SCHEMAS: Dict[str, Type[_StrictModel]] = {
    "CAMPAIGN_CREATE": CampaignCreatePayload,
    "CAMPAIGN_DONATE": CampaignDonatePayload,
    "CAMPAIGN_CLAIM": CampaignClaimPayload,
    "CAMPAIGN_REFUND": CampaignRefundPayload,
    "CAMPAIGN_METADATA_UPDATE": CampaignMetadataUpdatePayload,
    "CAMPAIGN_DEPOSIT_REGISTER": CampaignDepositRegisterPayload,
    "FEES_WITHDRAW": FeesWithdrawPayload,
}


def _schema_for(tx_type: str) -> Optional[Type[_StrictModel]]:
    return _SCHEMAS.get(str(tx_type or "").strip().upper())


def known_tx_types() -> Tuple[str, ...]:
    return tuple(sorted(_SCHEMAS.keys()))


def validate_payload(*, tx_type: str, payload: Any) -> Tuple[bool, str, str, Optional[Dict[str, Any]]]:
    """Validate payload against its schema.

    Returns: (ok, code, reason, details)
    """
    sch = _schema_for(tx_type)
    if sch is None:
        return False, "schema:unknown_tx", "no_schema_for_tx_type", {"tx_type": tx_type}

    if payload is None:
        return False, "schema:payload_missing", "payload_required", None
    if not isinstance(payload, dict):
        return False, "schema:payload_not_object", "payload_must_be_object", None

    try:
        sch(**payload)
        return True, "", "", None
    except ValidationError as ve:
        return (
            False,
            "schema:validation_error",
            "payload_schema_mismatch",
            {"errors": ve.errors(include_url=False, include_context=False)},
        )
