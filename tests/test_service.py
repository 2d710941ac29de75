"""
End-to-end behavior of OnboardingService over the merchant flow.
"""
import gc
from datetime import timedelta

import pytest

from onboarding_graph.config import OnboardingConfig
from onboarding_graph.core.ontology import GraphValidationError, NodeStatus, SessionStatus, StepDirection
from onboarding_graph.infrastructure.event_bus import EventType
from onboarding_graph.infrastructure.storage import JSONFileStorage, MemoryStorage, SessionNotFoundError
from onboarding_graph.orchestration.service import (
    NodeValidationError,
    OnboardingService,
    RetryLimitExceededError,
    SessionStateError,
)

START = "business_type_selection"
PAN = "pan_number_node_id"
PAYMENT = "payment_channel_node_id"
BUSINESS_INFO = "business_info_node_id"
DOCUMENTS = "business_document_node_id"
SIGNATORY = "authorised_signatory_node_id"
BANK = "bank_account_node_id"
COMPLETION = "completion_node_id"


def submit_current(service, session_id, merchant_answers):
    current = service.get_session(session_id).current_node_id
    return service.submit_node_data(session_id, merchant_answers[current])


class TestSessionStart:
    def test_starts_on_start_node(self, service, session):
        assert session.current_node_id == START
        assert session.status == SessionStatus.ACTIVE
        assert session.answers == {}
        assert session.dynamic_state.discriminator == "individual"

    def test_unknown_graph(self, service):
        with pytest.raises(KeyError):
            service.start_session("nope", "user_1")

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.get_session("nope")


class TestSubmission:
    def test_business_type_then_pan(self, service, session):
        result = service.submit_node_data(session.id, {"business_type": "individual"})
        assert result.completed_node_id == START
        assert result.next_node_id == PAN
        assert result.can_go_back is True
        statuses = service.get_node_status(session.id)["nodes"]
        assert statuses[START]["status"] == NodeStatus.COMPLETED.value
        assert statuses[DOCUMENTS]["status"] == NodeStatus.MANDATORY.value

    def test_individual_flow_completes(self, service, session, merchant_answers):
        service.submit_node_data(session.id, {"business_type": "individual"})
        visited = []
        for _ in range(3):
            visited.append(service.get_session(session.id).current_node_id)
            result = submit_current(service, session.id, merchant_answers)
        assert visited == [PAN, PAYMENT, BUSINESS_INFO]
        assert result.session_status == SessionStatus.COMPLETED
        assert result.rule_groups.satisfied_group == "individual_standard"
        assert result.next_node_id == COMPLETION

        stored = service.get_session(session.id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.current_node_id == COMPLETION

    def test_completed_session_rejects_submissions(self, service, session, merchant_answers):
        service.submit_node_data(session.id, {"business_type": "individual"})
        for _ in range(3):
            submit_current(service, session.id, merchant_answers)
        with pytest.raises(SessionStateError) as exc:
            service.submit_node_data(session.id, {"anything": 1})
        assert exc.value.status == SessionStatus.COMPLETED

    def test_invalid_data_leaves_session_untouched(self, service, session):
        before = service.get_session(session.id)
        with pytest.raises(NodeValidationError) as exc:
            service.submit_node_data(session.id, {})
        assert exc.value.node_id == START
        assert "required-field-missing" in exc.value.result.error_codes()
        assert service.get_session(session.id).model_dump() == before.model_dump()

    def test_pattern_failure_reported(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        with pytest.raises(NodeValidationError) as exc:
            service.submit_node_data(session.id, {"pan_number": "not-a-pan", "pan_document": "pan.pdf"})
        assert exc.value.node_id == PAN

    def test_result_serializes(self, service, session):
        payload = service.submit_node_data(session.id, {"business_type": "individual"}).to_dict()
        assert payload["session_status"] == "active"
        assert payload["rule_groups"]["complete"] is False


class TestDiscriminator:
    def test_submitting_new_business_type_rederives(self, service, session):
        service.submit_node_data(session.id, {"business_type": "llp"})
        status = service.get_node_status(session.id)
        assert status["discriminator"] == "llp"
        assert status["nodes"][START]["status"] == NodeStatus.COMPLETED.value
        assert status["nodes"][DOCUMENTS]["status"] == NodeStatus.MANDATORY.value
        assert service.get_session(session.id).dynamic_state.discriminator == "llp"

    def test_update_discriminator(self, service, session):
        view = service.update_discriminator(session.id, "proprietorship")
        assert view["discriminator"] == "proprietorship"
        assert view["completion_summary"]["can_complete"] is False
        stored = service.get_session(session.id)
        assert stored.answers["business_type"] == "proprietorship"
        assert stored.dynamic_state.discriminator == "proprietorship"

    def test_switching_to_a_satisfied_profile_can_complete(self, service, session, storage, merchant_answers):
        stored = storage.get_session(session.id)
        for node_id in (PAN, PAYMENT, BUSINESS_INFO):
            stored.answers.update(merchant_answers[node_id])
        storage.save_session(stored)

        assert service.update_discriminator(session.id, "proprietorship")["completion_summary"]["can_complete"] is False
        summary = service.update_discriminator(session.id, "individual")["completion_summary"]
        assert summary["rule_group_satisfied"] is True
        assert summary["can_complete"] is True

    def test_non_string_business_type_is_coerced(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        service.submit_node_data(session.id, {"pan_number": "ABCDE1234F", "pan_document": "pan.pdf", "business_type": 5})
        status = service.get_node_status(session.id)
        assert status["discriminator"] == "5"
        assert service.get_state_summary(session.id)["validation_issues"] == []

    def test_state_summary_is_clean(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        summary = service.get_state_summary(session.id)
        assert summary["validation_issues"] == []
        assert summary["counts_by_status"]["completed"] == 1


class TestNavigation:
    def test_go_back_returns_to_previous(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        assert service.go_back(session.id) == START
        stored = service.get_session(session.id)
        assert stored.current_node_id == START
        assert stored.history[-1].direction == StepDirection.BACKWARD

    def test_nowhere_to_go_back(self, service, session):
        assert service.go_back(session.id) is None

    def test_history_records_submissions(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        history = service.get_session_history(session.id)
        assert [(s.node_id, s.data) for s in history] == [(START, {"business_type": "individual"})]

    def test_eligible_nodes(self, service, session):
        service.submit_node_data(session.id, {"business_type": "individual"})
        eligible = service.get_eligible_nodes(session.id)
        assert START not in eligible
        assert COMPLETION not in eligible
        assert eligible[0] == PAN
        assert DOCUMENTS in eligible


class TestLifecycle:
    def test_pause_and_resume(self, service, session):
        service.pause_session(session.id)
        with pytest.raises(SessionStateError):
            service.submit_node_data(session.id, {"business_type": "individual"})
        assert service.resume_session(session.id).status == SessionStatus.ACTIVE

    def test_resume_requires_paused(self, service, session):
        with pytest.raises(SessionStateError):
            service.resume_session(session.id)

    def test_retry_limit(self, merchant_graph):
        service = OnboardingService(storage=MemoryStorage(), config=OnboardingConfig(max_retries=1))
        service.create_graph(merchant_graph)
        session = service.start_session(merchant_graph.id, "user_1")
        service.fail_session(session.id, "upstream timeout")
        assert service.retry_session(session.id).retry_count == 1
        service.fail_session(session.id, "upstream timeout")
        with pytest.raises(RetryLimitExceededError) as exc:
            service.retry_session(session.id)
        assert exc.value.max_retries == 1

    def test_retry_requires_failed(self, service, session):
        with pytest.raises(SessionStateError):
            service.retry_session(session.id)

    def test_idle_session_expires(self, service, session, storage):
        stale = storage.get_session(session.id)
        stale.updated_at = stale.updated_at - timedelta(days=2)
        storage.save_session(stale)
        with pytest.raises(SessionStateError):
            service.submit_node_data(session.id, {"business_type": "individual"})
        assert service.get_session(session.id).status == SessionStatus.EXPIRED
        with pytest.raises(SessionStateError):
            service.fail_session(session.id)


class TestGraphs:
    def test_invalid_graph_rejected(self, service):
        with pytest.raises(GraphValidationError) as exc:
            service.create_graph({"id": "broken", "start_node_id": "missing", "nodes": {}})
        assert exc.value.graph_id == "broken"
        assert exc.value.errors

    def test_new_graph_version_invalidates_templates(self, service, merchant_graph, session):
        assert any(key[0] == merchant_graph.id for key in service.engine.cached_views())
        service.create_graph(merchant_graph.model_copy(update={"version": "2.0"}))
        assert not any(key[0] == merchant_graph.id for key in service.engine.cached_views())


class TestListeners:
    def test_listener_sees_promotions(self, service, session):
        received = []
        service.add_listener(received.append, EventType.STATUS_CHANGED)
        service.submit_node_data(session.id, {"business_type": "individual"})
        promoted = {e.node_id for e in received if e.new_status == NodeStatus.MANDATORY.value}
        assert promoted == {DOCUMENTS, SIGNATORY, BANK}
        assert any(e.node_id == START and e.new_status == NodeStatus.COMPLETED.value for e in received)

    def test_rederivation_is_announced(self, service, session):
        received = []
        service.add_listener(received.append, EventType.RE_DERIVED)
        service.submit_node_data(session.id, {"business_type": "llp"})
        assert [e.reason for e in received] == ["discriminator individual -> llp"]

    def test_removed_listener_is_not_attached(self, service, session):
        received = []
        service.add_listener(received.append)
        service.remove_listener(received.append)
        service.submit_node_data(session.id, {"business_type": "individual"})
        assert received == []


class TestStorageBackends:
    def test_file_and_memory_storage_navigate_alike(self, merchant_graph, tmp_path):
        next_nodes = []
        for storage in (MemoryStorage(), JSONFileStorage(str(tmp_path / "store"))):
            service = OnboardingService(storage=storage)
            service.create_graph(merchant_graph)
            session = service.start_session(merchant_graph.id, "user_1")
            next_nodes.append(service.submit_node_data(session.id, {"business_type": "individual"}).next_node_id)
        assert next_nodes == [PAN, PAN]

    def test_storage_path_selects_file_storage(self, tmp_path):
        service = OnboardingService(config=OnboardingConfig(storage_path=str(tmp_path / "store")))
        assert isinstance(service.storage, JSONFileStorage)
        assert isinstance(OnboardingService().storage, MemoryStorage)

    def test_session_locks_are_released(self, service, session):
        service.get_node_status(session.id)
        with pytest.raises(SessionNotFoundError):
            service.get_node_status("missing")
        gc.collect()
        assert len(service._session_locks) == 0
