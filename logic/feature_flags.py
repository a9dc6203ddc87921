"""
logic/feature_flags.py
Pure logic: the feature flag schema and its validation.
No file access. Every flag is a boolean with a default.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class FeatureFlags(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    enable_payments: bool = Field(False, alias="enablePayments")
    enable_ai_recommendations: bool = Field(False, alias="enableAIRecommendations")
    enable_nostr_integration: bool = Field(True, alias="enableNostrIntegration")
    enable_experimental_ui: bool = Field(False, alias="enableExperimentalUI")

    # NOSTR, granular
    enable_nostr_key_generation: bool = Field(True, alias="enableNostrKeyGeneration")
    enable_nostr_event_publishing: bool = Field(True, alias="enableNostrEventPublishing")
    enable_nostr_event_subscription: bool = Field(True, alias="enableNostrEventSubscription")
    enable_nostr_direct_messages: bool = Field(False, alias="enableNostrDirectMessages")  # NIP-04
    enable_nostr_contact_list: bool = Field(True, alias="enableNostrContactList")  # NIP-02
    enable_nostr_event_caching: bool = Field(True, alias="enableNostrEventCaching")
    enable_nostr_relay: bool = Field(True, alias="enableNostrRelay")
    enable_nostr_ai_content_discovery: bool = Field(False, alias="enableNostrAIContentDiscovery")
    enable_nostr_mobile_optimizations: bool = Field(True, alias="enableNostrMobileOptimizations")


FLAG_NAMES: List[str] = [f.alias for f in FeatureFlags.model_fields.values()]


class FeatureFlagValidationError(ValueError):
    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        self.fields = [e["field"] for e in errors]
        detail = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(f"Invalid feature flags: {detail}")


def parse_feature_flags(data: Any) -> Dict[str, bool]:
    """
    Validate `data` against the schema and return the full flag set.

    Rules:
    - missing flags take their default
    - every value must be a real boolean ("true" or 1 is rejected)
    - unknown keys are rejected

    Returns:
        dict keyed by wire name (e.g. "enablePayments").

    Raises:
        FeatureFlagValidationError listing every violated field.
    """
    if not isinstance(data, dict):
        raise FeatureFlagValidationError(
            [{"field": "<root>", "message": "Feature flags must be a JSON object."}]
        )

    try:
        flags = FeatureFlags.model_validate(data)
    except ValidationError as e:
        errors = []
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"]) or "<root>"
            errors.append({"field": field, "message": err["msg"]})
        raise FeatureFlagValidationError(errors) from e

    return flags.model_dump(by_alias=True)


DEFAULT_FEATURE_FLAGS: Dict[str, bool] = parse_feature_flags({})
