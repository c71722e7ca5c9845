"""Tests for instruction assembly, signers, the in-process ledger, and the submitter."""

import pytest
from datetime import datetime, timezone

from eth_account import Account

from surveyx.errors import ConfirmationTimeout, SigningRejected, SubmissionRejected
from surveyx.ledger.instruction import (
    AccountMeta,
    build_submit_instruction,
    decode_submit_data,
    discriminator,
    encode_submit_data,
)
from surveyx.ledger.memory import InMemoryLedger
from surveyx.ledger.submitter import OnChainSubmitter
from surveyx.ledger.web3_ledger import PromptingSigner
from surveyx.models.submission import (
    CiphertextEnvelope,
    ConfirmationState,
    SubmissionKind,
)


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _envelope(offset: int = 42, ciphertext: bytes = b"sealed-bytes") -> CiphertextEnvelope:
    return CiphertextEnvelope(
        ciphertext=ciphertext,
        ephemeral_public_key=b"\x07" * 32,
        nonce=b"\x09" * 16,
        computation_offset=offset,
    )


@pytest.fixture
def submitter(ledger, alice, params) -> OnChainSubmitter:
    return OnChainSubmitter(ledger, alice, params, confirmation_timeout=5.0)


class TestInstruction:
    def test_data_layout(self) -> None:
        envelope = _envelope(offset=1, ciphertext=b"abc")
        data = encode_submit_data(SubmissionKind.SUBMIT_RESPONSE, envelope)
        assert data[:8] == discriminator("submit_response")
        assert data[8:16] == (1).to_bytes(8, "little")
        assert data[16:20] == (3).to_bytes(4, "little")
        assert data[20:23] == b"abc"
        assert len(data) == 8 + 8 + 4 + 3 + 32 + 16

    def test_decode_inverts_encode(self) -> None:
        envelope = _envelope(offset=99)
        decoded = decode_submit_data(encode_submit_data(SubmissionKind.CREATE_SURVEY, envelope))
        assert decoded["discriminator"] == discriminator("create_survey")
        assert decoded["computation_offset"] == 99
        assert decoded["ciphertext"] == envelope.ciphertext
        assert decoded["ephemeral_public_key"] == envelope.ephemeral_public_key
        assert decoded["nonce"] == envelope.nonce

    def test_decode_rejects_truncated(self) -> None:
        data = encode_submit_data(SubmissionKind.SUBMIT_RESPONSE, _envelope())
        with pytest.raises(ValueError, match="length mismatch"):
            decode_submit_data(data[:-1])

    def test_bad_key_length_rejected(self) -> None:
        envelope = CiphertextEnvelope(b"x", b"\x00" * 31, b"\x00" * 16, 1)
        with pytest.raises(ValueError, match="32 bytes"):
            encode_submit_data(SubmissionKind.SUBMIT_RESPONSE, envelope)

    def test_account_table(self, submitter, alice) -> None:
        accounts = submitter.accounts_for(42, SubmissionKind.SUBMIT_RESPONSE)
        instruction = build_submit_instruction(
            accounts, alice.address, SubmissionKind.SUBMIT_RESPONSE, _envelope(),
        )
        assert instruction.program_id == accounts.program
        assert instruction.accounts[0] == AccountMeta(alice.address, True, True)
        assert instruction.accounts[4].address == accounts.computation
        calldata = instruction.calldata()
        assert calldata[0] == 7
        assert calldata[21] == 0x03
        assert calldata.endswith(instruction.data)


class TestSigners:
    def test_local_signer_recovers_sender(self, alice, ledger, submitter) -> None:
        accounts = submitter.accounts_for(1, SubmissionKind.SUBMIT_RESPONSE)
        instruction = build_submit_instruction(
            accounts, alice.address, SubmissionKind.SUBMIT_RESPONSE, _envelope(1),
        )
        signed = alice.sign(ledger.build_transaction(instruction, alice.address))
        assert Account.recover_transaction(signed.raw) == alice.address
        assert signed.tx_hash.startswith("0x")

    def test_prompting_signer_declined(self, alice) -> None:
        signer = PromptingSigner(alice, prompt=lambda _: "n")
        with pytest.raises(SigningRejected, match="declined"):
            signer.sign({"to": alice.address, "data": b""})

    def test_prompting_signer_accepted(self, alice, ledger, submitter) -> None:
        prompts = []
        signer = PromptingSigner(alice, prompt=lambda text: prompts.append(text) or "y")
        accounts = submitter.accounts_for(1, SubmissionKind.SUBMIT_RESPONSE)
        instruction = build_submit_instruction(
            accounts, alice.address, SubmissionKind.SUBMIT_RESPONSE, _envelope(1),
        )
        signed = signer.sign(ledger.build_transaction(instruction, alice.address))
        assert signed.sender == alice.address
        assert len(prompts) == 1


class TestInMemoryLedger:
    def test_fee_deducted_on_submit(self, ledger, alice, submitter) -> None:
        before = ledger.get_balance(alice.address)
        submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE, now=_now())
        assert ledger.get_balance(alice.address) == before - ledger.gas * ledger.gas_price

    def test_unknown_behaviour_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown ledger behaviour"):
            InMemoryLedger().script("explode")

    def test_unfunded_sender_rejected(self, params) -> None:
        from surveyx.ledger.web3_ledger import LocalAccountSigner

        poor = LocalAccountSigner("0x" + "33" * 32)
        submitter = OnChainSubmitter(InMemoryLedger(), poor, params)
        with pytest.raises(SubmissionRejected, match="insufficient funds"):
            submitter.submit(_envelope(), poor.address, SubmissionKind.SUBMIT_RESPONSE)


class TestOnChainSubmitter:
    def test_confirmed(self, ledger, alice, submitter) -> None:
        tx = submitter.submit(
            _envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE, now=_now(),
        )
        assert tx.state == ConfirmationState.CONFIRMED
        assert tx.computation_offset == 42
        assert tx.submitted_utc == _now()
        assert tx.program_id == submitter.accounts_for(42, SubmissionKind.SUBMIT_RESPONSE).program
        assert len(ledger.confirmed()) == 1

    def test_identity_is_case_insensitive(self, alice, submitter) -> None:
        tx = submitter.submit(_envelope(), alice.address.lower(), SubmissionKind.SUBMIT_RESPONSE)
        assert tx.state == ConfirmationState.CONFIRMED

    def test_signer_mismatch_rejected(self, bob, submitter, ledger) -> None:
        with pytest.raises(SigningRejected, match="cannot sign"):
            submitter.submit(_envelope(), bob.address, SubmissionKind.SUBMIT_RESPONSE)
        assert ledger.broadcasts == {}

    def test_declined_signature(self, ledger, alice, params) -> None:
        signer = PromptingSigner(alice, prompt=lambda _: "no")
        submitter = OnChainSubmitter(ledger, signer, params)
        with pytest.raises(SigningRejected):
            submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)
        assert ledger.broadcasts == {}

    def test_rejected_by_ledger(self, ledger, alice, submitter) -> None:
        ledger.script("reject")
        with pytest.raises(SubmissionRejected, match="rejected"):
            submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)

    def test_reverted_carries_signature(self, ledger, alice, submitter) -> None:
        ledger.script("revert")
        with pytest.raises(SubmissionRejected) as info:
            submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)
        assert info.value.signature in ledger.broadcasts

    def test_stalled_times_out(self, ledger, alice, submitter) -> None:
        ledger.script("stall")
        with pytest.raises(ConfirmationTimeout) as info:
            submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)
        assert info.value.signature in ledger.broadcasts

    def test_late_confirmation_is_success(self, ledger, alice, submitter) -> None:
        ledger.script("late")
        tx = submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)
        assert tx.state == ConfirmationState.CONFIRMED

    def test_recheck_uses_grace_confirmation(self, ledger, alice, params) -> None:
        submitter = OnChainSubmitter(ledger, alice, params, recheck_timeout=1.0)
        ledger.script("late")
        tx = submitter.submit(_envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE)
        assert tx.state == ConfirmationState.CONFIRMED
        assert ledger.get(tx.signature).confirm_calls == 2

    def test_explicit_timeout_passed_through(self, alice, params) -> None:
        seen = []

        class _Recording(InMemoryLedger):
            def confirm(self, signature, timeout):
                seen.append(timeout)
                return super().confirm(signature, timeout)

        ledger = _Recording()
        ledger.fund(alice.address, 10 ** 18)
        OnChainSubmitter(ledger, alice, params).submit(
            _envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE, timeout=2.5,
        )
        assert seen == [2.5]

    def test_caller_timeout_skips_grace_wait(self, alice, params) -> None:
        seen = []

        class _Recording(InMemoryLedger):
            def confirm(self, signature, timeout):
                seen.append(timeout)
                return super().confirm(signature, timeout)

        ledger = _Recording()
        ledger.fund(alice.address, 10 ** 18)
        ledger.script("stall")
        submitter = OnChainSubmitter(ledger, alice, params, recheck_timeout=5.0)
        with pytest.raises(ConfirmationTimeout):
            submitter.submit(
                _envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE, timeout=1.0,
            )
        assert seen == [1.0]

    def test_caller_timeout_still_rechecks_state(self, ledger, alice, params) -> None:
        submitter = OnChainSubmitter(ledger, alice, params, recheck_timeout=5.0)
        ledger.script("late")
        tx = submitter.submit(
            _envelope(), alice.address, SubmissionKind.SUBMIT_RESPONSE, timeout=1.0,
        )
        assert tx.state == ConfirmationState.CONFIRMED
        assert ledger.get(tx.signature).confirm_calls == 1
