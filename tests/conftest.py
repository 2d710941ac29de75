"""
Shared fixtures for the onboarding test suite.
"""
import pytest

from onboarding_graph.config import OnboardingConfig
from onboarding_graph.core.ontology import (
    EdgeSpec,
    FieldSpec,
    GraphSpec,
    NodeDependency,
    NodeSpec,
    NodeType,
    Operator,
)
from onboarding_graph.core.requirements import RequirementCatalog
from onboarding_graph.flows.merchant import build_merchant_graph
from onboarding_graph.infrastructure.storage import MemoryStorage
from onboarding_graph.orchestration.dynamic_engine import DynamicEngine
from onboarding_graph.orchestration.rule_groups import RuleGroupEvaluator
from onboarding_graph.orchestration.service import OnboardingService


PAN_ANSWERS = {"pan_number": "ABCDE1234F", "pan_document": "pan.pdf"}
PAYMENT_ANSWERS = {"payment_channel": "no_code"}
BUSINESS_INFO_ANSWERS = {
    "business_name": "Acme Traders",
    "brand_name": "Acme",
    "business_address_line1": "12 Market Road",
    "business_city": "Pune",
    "business_state": "maharashtra",
    "business_pincode": "411001",
}


@pytest.fixture
def merchant_graph():
    return build_merchant_graph()


@pytest.fixture
def catalog():
    return RequirementCatalog()


@pytest.fixture
def engine(catalog):
    return DynamicEngine(catalog)


@pytest.fixture
def derive(engine, catalog, merchant_graph):
    """Derive a dynamic view of the merchant graph with the rule-group probe attached."""
    evaluator = RuleGroupEvaluator(catalog)

    def _derive(discriminator="individual", graph=None):
        dyn = engine.derive(graph or merchant_graph, discriminator)
        dyn.completion_probe = evaluator.probe(discriminator)
        return dyn

    return _derive


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def service(storage, merchant_graph):
    svc = OnboardingService(storage=storage, config=OnboardingConfig())
    svc.create_graph(merchant_graph)
    return svc


@pytest.fixture
def session(service, merchant_graph):
    return service.start_session(merchant_graph.id, "user_1")


@pytest.fixture
def tiny_graph():
    """start -> a -> b -> end with a b -> a back edge; b depends on `flag`."""
    return GraphSpec(
        id="tiny",
        start_node_id="start",
        nodes={
            "start": NodeSpec(
                id="start", name="Start", type=NodeType.START,
                fields=[FieldSpec(id="flag", required=True)],
            ),
            "a": NodeSpec(id="a", name="A", fields=[FieldSpec(id="x")]),
            "b": NodeSpec(
                id="b", name="B",
                fields=[FieldSpec(id="y")],
                dependencies=[NodeDependency(field="flag", operator=Operator.EQ, value="on")],
            ),
            "end": NodeSpec(id="end", name="End", type=NodeType.END),
        },
        edges=[
            EdgeSpec(id="e1", source="start", target="a"),
            EdgeSpec(id="e2", source="a", target="b"),
            EdgeSpec(id="e3", source="b", target="end"),
            EdgeSpec(id="e4", source="b", target="a"),
        ],
    )


@pytest.fixture
def merchant_answers():
    """Valid submissions per merchant screen, keyed by node id."""
    return {
        "business_type_selection": {"business_type": "individual"},
        "pan_number_node_id": dict(PAN_ANSWERS),
        "payment_channel_node_id": dict(PAYMENT_ANSWERS),
        "business_info_node_id": dict(BUSINESS_INFO_ANSWERS),
        "mcc_policy_verification_node_id": {
            "subcategory": "retail",
            "policy_pages": "https://acme.example/policies",
        },
        "bank_account_node_id": {
            "bank_account_number": "123456789012",
            "ifsc_code": "HDFC0001234",
            "bank_name": "Acme Traders Current Account",
        },
    }
