"""Tests for the survey service facade."""

import pytest
from datetime import datetime, timedelta, timezone

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from surveyx.coordination.coordinator import SubmissionCoordinator
from surveyx.coordination.notifier import InMemoryResultChannel
from surveyx.crypto.encryptor import PayloadEncryptor, StaticKeyService
from surveyx.models.submission import (
    ComputationResult,
    MetadataRecord,
    RecordStatus,
    SubmissionKind,
)
from surveyx.models.survey import QuestionType, SurveyDefinition, SurveyQuestion
from surveyx.persistence.event_log import EventKind, EventLog
from surveyx.service import SurveyService
from surveyx.store.memory import InMemoryMetadataStore


def _definition(max_responses: int = 10) -> SurveyDefinition:
    return SurveyDefinition(
        title="Lunch",
        description="What should we eat?",
        questions=(
            SurveyQuestion("Favourite?", QuestionType.MULTIPLE_CHOICE, ("Soup", "Salad")),
        ),
        category="food",
        hashtags=("lunch",),
        max_responses=max_responses,
    )


ANSWERS = [{"question_index": 0, "answer": "Soup"}]


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def channel() -> InMemoryResultChannel:
    return InMemoryResultChannel()


def _service(config, ledger, signer, key_service, store, channel=None, event_log=None) -> SurveyService:
    coordinator = SubmissionCoordinator.from_config(
        config, ledger, signer, key_service, store, channel=channel, event_log=event_log,
    )
    return SurveyService(coordinator, store, event_log=event_log)


@pytest.fixture
def creator(config, ledger, bob, key_service, store, channel) -> SurveyService:
    service = _service(config, ledger, bob, key_service, store, channel)
    yield service
    service._coordinator.notifier.close()


@pytest.fixture
def respondent(config, ledger, alice, key_service, store, channel) -> SurveyService:
    service = _service(config, ledger, alice, key_service, store, channel)
    yield service
    service._coordinator.notifier.close()


class TestCreateSurvey:
    def test_create(self, creator, store, bob) -> None:
        result = creator.create_survey(bob.address, _definition())
        assert result.success
        survey_id = result.data["survey_id"]
        assert survey_id.startswith("survey_")
        assert len(survey_id) == len("survey_") + 12
        record = creator.get_survey(survey_id)
        assert record.status == RecordStatus.CONFIRMED
        assert record.details["title"] == "Lunch"
        assert record.details["max_responses"] == 10
        assert "questions" not in record.details

    def test_invalid_definition(self, creator, bob, ledger) -> None:
        result = creator.create_survey(bob.address, _definition(max_responses=0))
        assert not result.success
        assert "max_responses must be at least 1" in result.errors
        assert ledger.broadcasts == {}

    def test_ledger_failure_reported_with_code(self, creator, bob, ledger, store) -> None:
        ledger.script("revert")
        result = creator.create_survey(bob.address, _definition())
        assert not result.success
        assert result.errors[0].startswith("submission_rejected: ")
        assert store.count == 0

    def test_unusable_executor_key_reported_with_code(self, config, ledger, bob, store) -> None:
        log = EventLog()
        service = _service(config, ledger, bob, StaticKeyService(b"\x00" * 32), store, event_log=log)
        result = service.create_survey(bob.address, _definition())
        assert not result.success
        assert result.errors[0].startswith("encryption_unavailable: ")
        assert len(log.events(EventKind.SUBMISSION_FAILED)) == 1
        assert store.count == 0
        service._coordinator.notifier.close()


class TestSubmitResponse:
    def test_submit_and_query(self, creator, respondent, alice, bob, executor_key) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        result = respondent.submit_response(alice.address, survey_id, ANSWERS)
        assert result.success
        assert result.data["respondent"] == alice.address
        assert respondent.has_responded(survey_id, alice.address)
        assert respondent.has_responded(survey_id, alice.address.lower())
        assert not respondent.has_responded(survey_id, bob.address)
        responses = respondent.list_responses(survey_id)
        assert len(responses) == 1
        assert responses[0].details == {"answer_count": 1}

    def test_payload_shape(self, creator, respondent, alice, bob, executor_key, store) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        respondent.submit_response(alice.address, survey_id, ANSWERS)
        outcome = respondent._outcomes[(survey_id, alice.address.lower(), SubmissionKind.SUBMIT_RESPONSE)]
        payload = PayloadEncryptor.open_envelope(executor_key, outcome.envelope)
        assert payload["survey_id"] == survey_id
        assert payload["responses"] == ANSWERS
        assert payload["respondent"] == alice.address
        assert isinstance(payload["submitted_at"], int)

    def test_second_response_rejected(self, creator, respondent, alice, bob) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        respondent.submit_response(alice.address, survey_id, ANSWERS)
        result = respondent.submit_response(alice.address, survey_id, ANSWERS)
        assert not result.success
        assert result.errors[0].startswith("already_submitted: ")
        assert len(respondent.list_responses(survey_id)) == 1

    def test_unknown_survey(self, respondent, alice) -> None:
        result = respondent.submit_response(alice.address, "survey_missing", ANSWERS)
        assert not result.success
        assert result.errors[0].startswith("resource_unavailable: ")

    def test_empty_answers(self, respondent, alice) -> None:
        result = respondent.submit_response(alice.address, "survey_1", [])
        assert not result.success

    def test_unserialisable_answer_reported(self, creator, respondent, alice, bob) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        result = respondent.submit_response(
            alice.address, survey_id, [{"question_index": 0, "answer": {"Soup", "Salad"}}],
        )
        assert not result.success
        assert "JSON-serialisable" in result.errors[0]
        assert not respondent.has_responded(survey_id, alice.address)

    def test_non_mapping_answer_rejected(self, respondent, alice) -> None:
        result = respondent.submit_response(alice.address, "survey_1", ["Soup"])
        assert result.errors == ["each answer must be a mapping"]

    def test_blank_identity(self, respondent) -> None:
        result = respondent.submit_response(" ", "survey_1", ANSWERS)
        assert not result.success
        assert "identity" in result.errors[0]

    def test_expired_deadline(self, creator, respondent, alice, bob) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        result = respondent.submit_response(
            alice.address, survey_id, ANSWERS,
            deadline=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        assert result.errors[0].startswith("confirmation_timeout: ")
        assert not respondent.has_responded(survey_id, alice.address)


class TestComputationResult:
    def test_result_decrypted(self, creator, respondent, alice, bob, channel) -> None:
        survey_id = creator.create_survey(bob.address, _definition()).data["survey_id"]
        data = respondent.submit_response(alice.address, survey_id, ANSWERS).data
        outcome = respondent._outcomes[(survey_id, alice.address.lower(), SubmissionKind.SUBMIT_RESPONSE)]
        nonce = b"\x03" * 16
        offset = data["computation_offset"]
        output = AESGCM(outcome.shared_key).encrypt(
            nonce, b'{"tally":[1,0]}', offset.to_bytes(8, "little"),
        )
        channel.publish(ComputationResult(offset, output, nonce))
        result = respondent.computation_result(survey_id, alice.address, timeout=10)
        assert result.success
        assert result.data["output"] == {"tally": [1, 0]}

    def test_untracked_submission(self, respondent, alice) -> None:
        result = respondent.computation_result("survey_1", alice.address)
        assert not result.success
        assert "No tracked" in result.errors[0]


class TestReconcile:
    def test_reconcile_collapses_orphans(self, config, ledger, alice, key_service) -> None:
        store = InMemoryMetadataStore(enforce_unique=False)
        log = EventLog()
        service = _service(config, ledger, alice, key_service, store, event_log=log)
        now = datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)
        ids = [
            store.insert(MetadataRecord(
                record_id="",
                resource_id="survey_1",
                identity=alice.address,
                kind=SubmissionKind.SUBMIT_RESPONSE,
                computation_offset=i,
                ciphertext_commitment="sha256:00",
                ciphertext_hex="00",
                ephemeral_public_key_hex="00" * 32,
                nonce_hex="00" * 16,
                created_utc=now + timedelta(minutes=i),
            ))
            for i in range(3)
        ]
        result = service.reconcile("survey_1", alice.address)
        assert result.success
        assert sorted(result.data["deleted"]) == sorted(ids[:2])
        assert result.data["remaining"] == 1
        assert len(log.events(EventKind.ORPHANS_RECONCILED)) == 1

    def test_status(self, respondent) -> None:
        status = respondent.status()
        assert status["tracked_submissions"] == 0
        assert status["pending_results"] == []
