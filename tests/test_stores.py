"""Tests for metadata stores — both backends must behave identically."""

import pytest
from datetime import datetime, timedelta, timezone

from surveyx.errors import UniqueViolation
from surveyx.models.submission import MetadataRecord, RecordStatus, SubmissionKind
from surveyx.store.base import MetadataStore
from surveyx.store.memory import InMemoryMetadataStore
from surveyx.store.sqlite import SqliteMetadataStore


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _record(
    identity: str = "0xAbC",
    resource_id: str = "survey_1",
    kind: SubmissionKind = SubmissionKind.SUBMIT_RESPONSE,
    created_utc: datetime | None = None,
    **overrides,
) -> MetadataRecord:
    return MetadataRecord(
        record_id=overrides.pop("record_id", ""),
        resource_id=resource_id,
        identity=identity,
        kind=kind,
        computation_offset=overrides.pop("computation_offset", 2 ** 63 + 5),
        ciphertext_commitment="sha256:ab",
        ciphertext_hex="ab",
        ephemeral_public_key_hex="01" * 32,
        nonce_hex="02" * 16,
        details=overrides.pop("details", {"answer_count": 2}),
        created_utc=created_utc or _now(),
    )


@pytest.fixture(params=["memory", "sqlite"])
def make_store(request):
    opened = []

    def _make(enforce_unique: bool = True):
        if request.param == "memory":
            store = InMemoryMetadataStore(enforce_unique=enforce_unique)
        else:
            store = SqliteMetadataStore(":memory:", enforce_unique=enforce_unique)
            opened.append(store)
        return store

    yield _make
    for store in opened:
        store.close()


class TestInsertAndQuery:
    def test_satisfies_protocol(self, make_store) -> None:
        assert isinstance(make_store(), MetadataStore)

    def test_insert_assigns_id(self, make_store) -> None:
        store = make_store()
        record_id = store.insert(_record())
        assert record_id.startswith("rec_")
        stored = store.get(record_id)
        assert stored.status == RecordStatus.PENDING
        assert stored.details == {"answer_count": 2}
        assert stored.created_utc == _now()

    def test_large_offset_round_trips(self, make_store) -> None:
        store = make_store()
        record_id = store.insert(_record(computation_offset=2 ** 64 - 1))
        assert store.get(record_id).computation_offset == 2 ** 64 - 1

    def test_query_matches_identity_case_insensitively(self, make_store) -> None:
        store = make_store()
        store.insert(_record(identity="0xAbC"))
        assert len(store.query("survey_1", "0xabc")) == 1
        assert len(store.query("survey_1", "0xABC", SubmissionKind.SUBMIT_RESPONSE)) == 1

    def test_query_filters_kind(self, make_store) -> None:
        store = make_store()
        store.insert(_record(kind=SubmissionKind.CREATE_SURVEY))
        assert store.query("survey_1", "0xabc", SubmissionKind.SUBMIT_RESPONSE) == []
        assert len(store.query("survey_1", "0xabc")) == 1

    def test_get_missing(self, make_store) -> None:
        assert make_store().get("rec_missing") is None

    def test_duplicate_record_id_rejected(self, make_store) -> None:
        store = make_store(enforce_unique=False)
        store.insert(_record(record_id="rec_fixed"))
        with pytest.raises(ValueError, match="already exists"):
            store.insert(_record(record_id="rec_fixed", identity="0xdef"))


class TestUniqueness:
    def test_live_duplicate_rejected(self, make_store) -> None:
        store = make_store()
        store.insert(_record())
        with pytest.raises(UniqueViolation):
            store.insert(_record(identity="0xABC"))

    def test_other_kind_allowed(self, make_store) -> None:
        store = make_store()
        store.insert(_record(kind=SubmissionKind.CREATE_SURVEY))
        store.insert(_record(kind=SubmissionKind.SUBMIT_RESPONSE))
        assert len(store.list_by_resource("survey_1")) == 2

    def test_delete_frees_key(self, make_store) -> None:
        store = make_store()
        record_id = store.insert(_record())
        store.delete(record_id)
        store.insert(_record())
        assert len(store.query("survey_1", "0xabc")) == 1

    def test_legacy_store_accumulates_orphans(self, make_store) -> None:
        store = make_store(enforce_unique=False)
        store.insert(_record())
        store.insert(_record())
        assert len(store.query("survey_1", "0xabc")) == 2


class TestOrdering:
    def test_newest_first_by_creation_time(self, make_store) -> None:
        store = make_store(enforce_unique=False)
        old = store.insert(_record(created_utc=_now() - timedelta(hours=1)))
        new = store.insert(_record(created_utc=_now()))
        older = store.insert(_record(created_utc=_now() - timedelta(hours=2)))
        ids = [r.record_id for r in store.query("survey_1", "0xabc")]
        assert ids == [new, old, older]

    def test_sequence_breaks_ties(self, make_store) -> None:
        store = make_store(enforce_unique=False)
        first = store.insert(_record())
        second = store.insert(_record())
        assert [r.record_id for r in store.query("survey_1", "0xabc")] == [second, first]

    def test_list_by_resource(self, make_store) -> None:
        store = make_store()
        store.insert(_record(identity="0x1"))
        store.insert(_record(identity="0x2"))
        store.insert(_record(identity="0x3", resource_id="survey_2"))
        assert len(store.list_by_resource("survey_1", SubmissionKind.SUBMIT_RESPONSE)) == 2


class TestDeleteAndConfirm:
    def test_delete_is_idempotent(self, make_store) -> None:
        store = make_store()
        record_id = store.insert(_record())
        store.delete(record_id)
        store.delete(record_id)
        assert store.get(record_id) is None

    def test_mark_confirmed(self, make_store) -> None:
        store = make_store()
        record_id = store.insert(_record())
        later = _now() + timedelta(seconds=30)
        confirmed = store.mark_confirmed(record_id, "0xsig", now=later)
        assert confirmed.status == RecordStatus.CONFIRMED
        stored = store.get(record_id)
        assert stored.is_confirmed
        assert stored.signature == "0xsig"
        assert stored.updated_utc == later

    def test_mark_confirmed_unknown(self, make_store) -> None:
        with pytest.raises(ValueError, match="Unknown record"):
            make_store().mark_confirmed("rec_missing", "0xsig")

    def test_returned_records_are_copies(self) -> None:
        store = InMemoryMetadataStore()
        record_id = store.insert(_record())
        store.get(record_id).details["answer_count"] = 99
        assert store.get(record_id).details == {"answer_count": 2}


class TestSqlitePersistence:
    def test_survives_reopen(self, tmp_path) -> None:
        path = str(tmp_path / "records.db")
        store = SqliteMetadataStore(path)
        record_id = store.insert(_record())
        store.close()

        reopened = SqliteMetadataStore(path)
        assert reopened.get(record_id).identity == "0xAbC"
        with pytest.raises(UniqueViolation):
            reopened.insert(_record())
        reopened.close()
