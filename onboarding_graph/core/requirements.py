"""
DISCRIMINATOR REQUIREMENTS
Per-discriminator data: which nodes start out mandatory, and which rule
groups count as a finished onboarding.

Every discriminator carries its own explicit lists. Shared building blocks
below are plain dicts merged into each group; nothing is produced by
rewriting identifiers at runtime.
"""
import logging
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from onboarding_graph.core.ontology import Operator

logger = logging.getLogger("Onboarding.Requirements")


class ConditionalFieldRule(BaseModel):
    """`field` on `node_id` is required while `trigger_field <operator> value`."""
    node_id: str
    field: str
    trigger_field: str
    operator: Operator = Operator.EQ
    value: Any = None


class RuleGroup(BaseModel):
    id: str
    name: str = ""
    required_nodes: List[str] = Field(default_factory=list)
    required_fields: Dict[str, List[str]] = Field(default_factory=dict)
    conditional_fields: List[ConditionalFieldRule] = Field(default_factory=list)


class DiscriminatorProfile(BaseModel):
    discriminator: str
    required_nodes: List[str] = Field(default_factory=list)     # node names or ids
    rule_groups: List[RuleGroup] = Field(default_factory=list)


# =============================================================================
# DEFAULT TABLE (merchant onboarding)
# =============================================================================

PAN = {"pan_number_node_id": ["pan_number", "pan_document"]}
PAYMENT = {"payment_channel_node_id": ["payment_channel"]}
BUSINESS_INFO = {
    "business_info_node_id": [
        "business_name",
        "brand_name",
        "business_address_line1",
        "business_city",
        "business_state",
        "business_pincode",
    ]
}
CATEGORY = {"mcc_policy_verification_node_id": ["subcategory"]}
BANK = {"bank_account_node_id": ["bank_account_number", "ifsc_code", "bank_name"]}
SIGNATORY = {"authorised_signatory_node_id": ["signatory_name", "signatory_pan"]}

PAYMENT_URLS = [
    ConditionalFieldRule(
        node_id="payment_channel_node_id", field="website_url",
        trigger_field="payment_channel", operator=Operator.EQ, value="website",
    ),
    ConditionalFieldRule(
        node_id="payment_channel_node_id", field="android_url",
        trigger_field="payment_channel", operator=Operator.EQ, value="app",
    ),
    ConditionalFieldRule(
        node_id="payment_channel_node_id", field="ios_url",
        trigger_field="payment_channel", operator=Operator.EQ, value="app",
    ),
]

BASE_NODES = ["PAN Number", "Payment Channel", "Business Information"]
PROPRIETOR_NODES = BASE_NODES + ["MCC & Policy Verification", "Bank Account Details"]
ENTITY_NODES = PROPRIETOR_NODES + ["Business Document", "Authorised Signatory Details"]


def _group(group_id: str, name: str, *parts: Dict[str, List[str]]) -> RuleGroup:
    fields: Dict[str, List[str]] = {}
    for part in parts:
        for node_id, field_ids in part.items():
            fields.setdefault(node_id, []).extend(field_ids)
    return RuleGroup(
        id=group_id,
        name=name,
        required_nodes=list(fields),
        required_fields=fields,
        conditional_fields=list(PAYMENT_URLS),
    )


def _documents(*field_ids: str) -> Dict[str, List[str]]:
    return {"business_document_node_id": list(field_ids)}


def _entity(discriminator: str, group_id: str, label: str, *documents: str) -> DiscriminatorProfile:
    return DiscriminatorProfile(
        discriminator=discriminator,
        required_nodes=list(ENTITY_NODES),
        rule_groups=[
            _group(
                group_id, label,
                PAN, PAYMENT, BUSINESS_INFO, CATEGORY, BANK, SIGNATORY, _documents(*documents),
            ),
        ],
    )


def default_profiles() -> Dict[str, DiscriminatorProfile]:
    profiles = [
        DiscriminatorProfile(
            discriminator="individual",
            required_nodes=list(BASE_NODES),
            rule_groups=[
                _group("individual_standard", "Individual onboarding", PAN, PAYMENT, BUSINESS_INFO),
                _group(
                    "individual_with_category", "Individual onboarding with category",
                    PAN, PAYMENT, BUSINESS_INFO, CATEGORY,
                ),
            ],
        ),
        DiscriminatorProfile(
            discriminator="proprietorship",
            required_nodes=list(PROPRIETOR_NODES),
            rule_groups=[
                _group(
                    "proprietorship_msme", "Proprietorship with MSME certificate",
                    PAN, PAYMENT, BUSINESS_INFO, CATEGORY, BANK, _documents("msme_document"),
                ),
                _group(
                    "proprietorship_gst", "Proprietorship with GST registration",
                    PAN, PAYMENT, BUSINESS_INFO, CATEGORY, BANK, _documents("gst_document", "gstin_number"),
                ),
            ],
        ),
        _entity("private_limited", "private_limited_standard", "Private limited onboarding", "cin_document", "certificate_of_incorporation"),
        _entity("public_limited", "public_limited_standard", "Public limited onboarding", "cin_document", "certificate_of_incorporation"),
        _entity("partnership", "partnership_standard", "Partnership onboarding", "partnership_deed"),
        _entity("llp", "llp_standard", "LLP onboarding", "certificate_of_incorporation"),
        _entity("trust", "trust_standard", "Trust onboarding", "trust_deed"),
        _entity("society", "society_standard", "Society onboarding", "society_registration_certificate"),
        _entity("huf", "huf_standard", "HUF onboarding", "huf_deed"),
    ]
    return {p.discriminator: p for p in profiles}


# =============================================================================
# CATALOG
# =============================================================================

class RequirementCatalog:
    """Lookup over discriminator profiles. Unknown discriminators have no requirements."""

    def __init__(self, profiles: Optional[Dict[str, DiscriminatorProfile]] = None):
        self.profiles: Dict[str, DiscriminatorProfile] = profiles if profiles is not None else default_profiles()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequirementCatalog":
        profiles = {}
        for discriminator, body in (data or {}).items():
            body = dict(body or {})
            body.setdefault("discriminator", discriminator)
            profiles[discriminator] = DiscriminatorProfile.model_validate(body)
        return cls(profiles)

    @classmethod
    def from_yaml(cls, path: str) -> "RequirementCatalog":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        catalog = cls.from_dict(data.get("discriminators", data))
        logger.info(f"Loaded requirements for {len(catalog.profiles)} discriminators from {path}")
        return catalog

    def discriminators(self) -> List[str]:
        return list(self.profiles)

    def profile(self, discriminator: str) -> Optional[DiscriminatorProfile]:
        return self.profiles.get(discriminator)

    def required_nodes_for(self, discriminator: str) -> List[str]:
        profile = self.profiles.get(discriminator)
        return list(profile.required_nodes) if profile else []

    def rule_groups_for(self, discriminator: str) -> List[RuleGroup]:
        profile = self.profiles.get(discriminator)
        if profile is None:
            logger.debug(f"No rule groups registered for discriminator '{discriminator}'")
            return []
        return list(profile.rule_groups)
