"""
MERCHANT ONBOARDING FLOW
Reference graph: business type first, then identity, payment channel,
category, business details, documents, signatory and bank account. Which of
those are required depends on the selected business type.
"""
from typing import List

from onboarding_graph.core.ontology import (
    ConditionalRule,
    CrossNodeCondition,
    CrossNodeConditionType,
    CrossNodeRule,
    EdgeGuard,
    EdgeSpec,
    FieldConstraints,
    FieldRef,
    FieldSpec,
    FieldType,
    GraphSpec,
    GuardType,
    MatchOperator,
    NodeDependency,
    NodeSpec,
    NodeType,
    Operator,
    Severity,
    ValidationRules,
)

BUSINESS_TYPES = [
    "individual", "proprietorship", "private_limited", "public_limited",
    "partnership", "llp", "trust", "society", "huf",
]

SUBCATEGORIES = [
    "retail", "wholesale", "services", "manufacturing", "technology", "healthcare",
    "education", "finance", "real_estate", "hospitality", "transportation",
    "agriculture", "consulting", "other",
]

STATES = [
    "andhra_pradesh", "arunachal_pradesh", "assam", "bihar", "chhattisgarh", "goa",
    "gujarat", "haryana", "himachal_pradesh", "jharkhand", "karnataka", "kerala",
    "madhya_pradesh", "maharashtra", "manipur", "meghalaya", "mizoram", "nagaland",
    "odisha", "punjab", "rajasthan", "sikkim", "tamil_nadu", "telangana", "tripura",
    "uttar_pradesh", "uttarakhand", "west_bengal",
]

URL_PATTERN = r"^https?://[^\s/$.?#].[^\s]*$"

BUSINESS_TYPE_SELECTED = NodeDependency(
    field="business_type", operator=Operator.NE, value="", condition="Business type must be selected"
)

START = "business_type_selection"
PAN = "pan_number_node_id"
PAYMENT = "payment_channel_node_id"
CATEGORY = "mcc_policy_verification_node_id"
BUSINESS_INFO = "business_info_node_id"
DOCUMENTS = "business_document_node_id"
BMC = "bmc_document_node_id"
SIGNATORY = "authorised_signatory_node_id"
BANK = "bank_account_node_id"
COMPLETION = "completion_node_id"


def _text(field_id: str, required: bool = True, **constraints) -> FieldSpec:
    return FieldSpec(id=field_id, type=FieldType.TEXT, required=required, constraints=FieldConstraints(**constraints))


def _file(field_id: str, required: bool = False) -> FieldSpec:
    return FieldSpec(id=field_id, type=FieldType.FILE, required=required)


def _select(field_id: str, options: List[str], required: bool = True, **constraints) -> FieldSpec:
    return FieldSpec(
        id=field_id, type=FieldType.SELECT, required=required, options=options,
        constraints=FieldConstraints(**constraints),
    )


def build_nodes() -> List[NodeSpec]:
    return [
        NodeSpec(
            id=START, name="Business Type Selection", type=NodeType.START,
            description="Select your business type",
            fields=[_select("business_type", BUSINESS_TYPES, custom_rules=["business_type_validation"])],
            validation=ValidationRules(required_fields=["business_type"]),
        ),
        NodeSpec(
            id=PAN, name="PAN Number", description="Enter your PAN number",
            fields=[
                _text("pan_number", pattern=r"^[A-Z]{5}[0-9]{4}[A-Z]$", custom_rules=["pan_validation"]),
                _file("pan_document", required=True),
            ],
            validation=ValidationRules(required_fields=["pan_number", "pan_document"]),
        ),
        NodeSpec(
            id=PAYMENT, name="Payment Channel", type=NodeType.DECISION,
            description="Select your payment channel",
            fields=[
                _select("payment_channel", ["website", "app", "no_code"]),
                _text("website_url", required=False, pattern=URL_PATTERN),
                _text("android_url", required=False, pattern=URL_PATTERN),
                _text("ios_url", required=False, pattern=URL_PATTERN),
            ],
            validation=ValidationRules(
                required_fields=["payment_channel"],
                conditional_rules=[
                    ConditionalRule(
                        field="payment_channel", operator=Operator.EQ, value="website",
                        rule="website is the payment channel", required_fields=["website_url"],
                    ),
                    ConditionalRule(
                        field="payment_channel", operator=Operator.EQ, value="app",
                        rule="app is the payment channel", required_fields=["android_url", "ios_url"],
                    ),
                ],
            ),
        ),
        NodeSpec(
            id=CATEGORY, name="MCC & Policy Verification",
            description="Provide business category and policy information",
            fields=[
                _select("subcategory", SUBCATEGORIES),
                _text("policy_pages", min_length=10, max_length=1000),
            ],
            validation=ValidationRules(required_fields=["subcategory", "policy_pages"]),
        ),
        NodeSpec(
            id=BUSINESS_INFO, name="Business Information", description="Enter business details",
            fields=[
                _text("business_name", min_length=2, max_length=200),
                _text("brand_name", min_length=2, max_length=200),
                _text("business_address_line1", min_length=5, max_length=200),
                _text("business_address_line2", required=False, max_length=200),
                _text("business_city", min_length=2, max_length=50),
                _select("business_state", STATES),
                _text("business_pincode", pattern=r"^[1-9][0-9]{5}$"),
            ],
            validation=ValidationRules(required_fields=[
                "business_name", "brand_name", "business_address_line1",
                "business_city", "business_state", "business_pincode",
            ]),
        ),
        NodeSpec(
            id=DOCUMENTS, name="Business Document", description="Upload business registration documents",
            fields=[
                _file("msme_document"),
                _file("gst_document"),
                _text("gstin_number", required=False, custom_rules=["gst_validation"]),
                _file("cin_document"),
                _text("cin_number", required=False, min_length=21, max_length=21),
                _file("certificate_of_incorporation"),
                _file("partnership_deed"),
                _file("trust_deed"),
                _file("society_registration_certificate"),
                _file("huf_deed"),
            ],
            validation=ValidationRules(conditional_rules=[
                ConditionalRule(
                    field="business_type", operator=Operator.IN, value="private_limited,public_limited",
                    rule="limited companies must provide incorporation documents",
                    required_fields=["cin_document", "certificate_of_incorporation"],
                ),
                ConditionalRule(
                    field="business_type", operator=Operator.EQ, value="partnership",
                    rule="partnerships must provide a partnership deed", required_fields=["partnership_deed"],
                ),
                ConditionalRule(
                    field="business_type", operator=Operator.EQ, value="llp",
                    rule="LLPs must provide a certificate of incorporation",
                    required_fields=["certificate_of_incorporation"],
                ),
                ConditionalRule(
                    field="business_type", operator=Operator.EQ, value="trust",
                    rule="trusts must provide a trust deed", required_fields=["trust_deed"],
                ),
                ConditionalRule(
                    field="business_type", operator=Operator.EQ, value="society",
                    rule="societies must provide a registration certificate",
                    required_fields=["society_registration_certificate"],
                ),
                ConditionalRule(
                    field="business_type", operator=Operator.EQ, value="huf",
                    rule="HUFs must provide a HUF deed", required_fields=["huf_deed"],
                ),
            ]),
            dependencies=[BUSINESS_TYPE_SELECTED],
        ),
        NodeSpec(
            id=BMC, name="BMC Document", description="Upload BMC document if required",
            fields=[_file("bmc_document")],
            dependencies=[NodeDependency(
                field="subcategory", operator=Operator.NE, value="", condition="Subcategory must be selected",
            )],
        ),
        NodeSpec(
            id=SIGNATORY, name="Authorised Signatory Details",
            description="Details of the person signing on behalf of the business",
            fields=[
                _text("signatory_name", min_length=2, max_length=100),
                _text("signatory_pan", pattern=r"^[A-Z]{5}[0-9]{4}[A-Z]$"),
                _file("signatory_pan_document", required=True),
                _file("signatory_aadhaar_front", required=True),
                _file("signatory_aadhaar_back", required=True),
            ],
            validation=ValidationRules(required_fields=[
                "signatory_name", "signatory_pan", "signatory_pan_document",
                "signatory_aadhaar_front", "signatory_aadhaar_back",
            ]),
            dependencies=[BUSINESS_TYPE_SELECTED],
        ),
        NodeSpec(
            id=BANK, name="Bank Account Details", description="Enter bank account information",
            fields=[
                _text("bank_account_number", min_length=9, max_length=18, pattern=r"^[0-9]+$"),
                _text("ifsc_code", pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$"),
                _text("bank_name", min_length=2, max_length=100),
            ],
            validation=ValidationRules(
                required_fields=["bank_account_number", "ifsc_code", "bank_name"],
                custom_rules=["penny_testing_verification"],
            ),
            dependencies=[BUSINESS_TYPE_SELECTED],
        ),
        NodeSpec(
            id=COMPLETION, name="Onboarding Complete", type=NodeType.END,
            description="Your onboarding is complete and under review",
        ),
    ]


def _edge(source: str, target: str, guard: EdgeGuard = None, priority: int = 0) -> EdgeSpec:
    return EdgeSpec(id=f"{source}__{target}", source=source, target=target, guard=guard or EdgeGuard(), priority=priority)


def _when(field: str) -> EdgeGuard:
    return EdgeGuard(type=GuardType.FIELD_VALUE, field=field, operator=Operator.NE, value="")


def build_edges() -> List[EdgeSpec]:
    independent = [START, PAN, PAYMENT, CATEGORY, BUSINESS_INFO]
    edges: List[EdgeSpec] = []

    # Independent screens, in order, each able to skip ahead
    for i, source in enumerate(independent):
        for target in independent[i + 1:]:
            edges.append(_edge(source, target))

    # Business-type gated screens
    for source in independent:
        for target in (DOCUMENTS, SIGNATORY, BANK):
            edges.append(_edge(source, target, _when("business_type"), priority=1))

    edges.append(_edge(CATEGORY, BMC, _when("subcategory"), priority=1))
    edges.append(_edge(DOCUMENTS, BMC))
    edges.append(_edge(DOCUMENTS, SIGNATORY))
    edges.append(_edge(BMC, SIGNATORY))
    edges.append(_edge(SIGNATORY, BANK))

    for source in independent + [DOCUMENTS, BMC, SIGNATORY, BANK]:
        edges.append(_edge(source, COMPLETION, EdgeGuard(type=GuardType.COMPLETION_CHECK), priority=2))

    return edges


def build_cross_node_rules() -> List[CrossNodeRule]:
    return [
        CrossNodeRule(
            id="business_name_bank_name_match",
            name="Business Name and Bank Name Consistency",
            fields=[
                FieldRef(node_id=BUSINESS_INFO, field_id="business_name", alias="business_name"),
                FieldRef(node_id=BANK, field_id="bank_name", alias="bank_name"),
            ],
            condition=CrossNodeCondition(
                type=CrossNodeConditionType.CUSTOM_LOGIC, logic="business_name_matches_bank_name",
            ),
            message="Business name should match or be consistent with the bank name",
            severity=Severity.WARNING,
        ),
        CrossNodeRule(
            id="pan_signatory_consistency",
            name="PAN and Signatory PAN Consistency",
            fields=[
                FieldRef(node_id=PAN, field_id="pan_number", alias="pan_number"),
                FieldRef(node_id=SIGNATORY, field_id="signatory_pan", alias="signatory_pan"),
            ],
            condition=CrossNodeCondition(type=CrossNodeConditionType.CUSTOM_LOGIC, logic="pan_matches_signatory_pan"),
            message="PAN number should match the authorised signatory PAN for individual businesses",
            severity=Severity.ERROR,
            discriminator="individual",
        ),
        CrossNodeRule(
            id="address_completeness",
            name="Address Information Completeness",
            fields=[
                FieldRef(node_id=BUSINESS_INFO, field_id="business_city", alias="business_city"),
                FieldRef(node_id=BUSINESS_INFO, field_id="business_state", alias="business_state"),
                FieldRef(node_id=BUSINESS_INFO, field_id="business_pincode", alias="business_pincode"),
            ],
            condition=CrossNodeCondition(type=CrossNodeConditionType.CUSTOM_LOGIC, logic="address_consistency"),
            message="All address fields (city, state, pincode) must be completed",
            severity=Severity.ERROR,
        ),
        CrossNodeRule(
            id="payment_channel_url_consistency",
            name="Website URL Scheme",
            fields=[FieldRef(node_id=PAYMENT, field_id="website_url", alias="website_url")],
            condition=CrossNodeCondition(
                type=CrossNodeConditionType.FIELD_CONTAINS, operator=MatchOperator.STARTS_WITH,
                fields=["website_url"], value="http",
            ),
            message="Website URL must be an http(s) address",
            severity=Severity.ERROR,
        ),
        CrossNodeRule(
            id="gstin_pan_consistency",
            name="GSTIN embeds PAN",
            fields=[
                FieldRef(node_id=DOCUMENTS, field_id="gstin_number", alias="gstin_number"),
                FieldRef(node_id=PAN, field_id="pan_number", alias="pan_number"),
            ],
            condition=CrossNodeCondition(
                type=CrossNodeConditionType.FIELD_MATCH, operator=MatchOperator.CONTAINS,
                fields=["gstin_number", "pan_number"],
            ),
            message="GSTIN should contain the business PAN",
            severity=Severity.ERROR,
        ),
    ]


def build_merchant_graph(graph_id: str = "merchant_onboarding", version: str = "1.0") -> GraphSpec:
    nodes = build_nodes()
    return GraphSpec(
        id=graph_id,
        name="Merchant Onboarding",
        version=version,
        start_node_id=START,
        nodes={n.id: n for n in nodes},
        edges=build_edges(),
        cross_node_rules=build_cross_node_rules(),
    )
