"""Tests for admission: idempotence, replay protection and the membership guard."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from agentfails import membership
from agentfails.chain import ChainUnavailable
from agentfails.membership import (
    InvalidWallet, MembershipRequired, PaymentInvalid, admit, is_member, require_member,
)
from agentfails.models import Member
from agentfails.payments import RejectReason

from conftest import OTHER, PAYER, TX, TX2, FakeReader, receipt, transfer_log

PRICE = 2_000_000


def _count(db) -> int:
    return db.execute(select(func.count(Member.id))).scalar_one()


@pytest.fixture
def paid(reader: FakeReader) -> FakeReader:
    reader.add(TX, receipt(transfer_log(PRICE)))
    reader.add(TX2, receipt(transfer_log(PRICE)))
    return reader


class TestAdmit:
    def test_new_member(self, db, paid, settings) -> None:
        result = admit(db, paid, settings, PAYER, TX)
        assert result.created
        m = result.member
        assert m.wallet_address == PAYER.lower()
        assert m.payment_tx_hash == TX
        assert m.payment_amount == Decimal("2.00")
        assert m.payment_currency == "USDC"
        assert _count(db) == 1

    def test_same_claim_twice_is_idempotent(self, db, paid, settings, monkeypatch) -> None:
        first = admit(db, paid, settings, PAYER, TX)

        added = []
        real_add = db.add
        monkeypatch.setattr(db, "add", lambda obj: (added.append(obj), real_add(obj)))
        wallet_lookups = []
        real_by_wallet = membership.find_by_wallet
        monkeypatch.setattr(
            membership, "find_by_wallet",
            lambda session, wallet: (wallet_lookups.append(wallet), real_by_wallet(session, wallet))[1],
        )

        second = admit(db, paid, settings, PAYER, TX)
        assert added == []
        assert wallet_lookups == []
        assert not second.created
        assert second.member.id == first.member.id
        assert _count(db) == 1

    def test_consumed_tx_with_other_wallet_returns_original(self, db, paid, settings) -> None:
        first = admit(db, paid, settings, PAYER, TX)
        second = admit(db, paid, settings, OTHER, TX)
        assert not second.created
        assert second.member.id == first.member.id
        assert second.member.wallet_address == PAYER.lower()
        assert not is_member(db, OTHER)

    def test_tx_hash_case_does_not_bypass_replay(self, db, paid, settings) -> None:
        admit(db, paid, settings, PAYER, TX)
        again = admit(db, paid, settings, OTHER, TX.upper().replace("0X", "0x"))
        assert not again.created
        assert _count(db) == 1

    def test_wallet_already_member_with_second_payment(self, db, paid, settings) -> None:
        first = admit(db, paid, settings, PAYER, TX)
        second = admit(db, paid, settings, PAYER.lower(), TX2)
        assert not second.created
        assert second.member.payment_tx_hash == first.member.payment_tx_hash
        assert _count(db) == 1

    def test_underpayment_creates_nothing(self, db, reader, settings) -> None:
        reader.add(TX, receipt(transfer_log(PRICE - 1)))
        with pytest.raises(PaymentInvalid) as exc:
            admit(db, reader, settings, PAYER, TX)
        assert exc.value.reason is RejectReason.UNDERPAYMENT
        assert _count(db) == 0

    def test_unknown_tx(self, db, reader, settings) -> None:
        with pytest.raises(PaymentInvalid) as exc:
            admit(db, reader, settings, PAYER, TX)
        assert exc.value.reason is RejectReason.NOT_FOUND

    @pytest.mark.parametrize("wallet", ["", "0x123", "AA00000000000000000000000000000000000001", None])
    def test_invalid_wallet_checked_before_chain(self, db, reader, settings, wallet) -> None:
        with pytest.raises(InvalidWallet):
            admit(db, reader, settings, wallet, TX)
        assert reader.calls == 0

    def test_chain_outage_propagates(self, db, reader, settings) -> None:
        reader.down = True
        with pytest.raises(ChainUnavailable):
            admit(db, reader, settings, PAYER, TX)
        assert _count(db) == 0


class TestRaces:
    def test_concurrent_wallet_race_keeps_one_row(self, db, session_factory, paid, settings) -> None:
        # Another request wins the race for the same wallet with a different tx.
        other = session_factory()
        winner = admit(other, paid, settings, PAYER, TX2).member
        winner_id = winner.id
        other.close()

        loser = admit(db, paid, settings, PAYER, TX)
        assert not loser.created
        assert loser.member.id == winner_id
        assert loser.member.payment_tx_hash == TX2
        assert _count(db) == 1

    def test_concurrent_tx_race_falls_back_to_tx_lookup(self, db, session_factory, paid, settings, monkeypatch) -> None:
        other = session_factory()
        winner_id = admit(other, paid, settings, PAYER, TX).member.id
        other.close()

        real = membership.find_by_tx
        seen = []

        def stale_lookup(session, tx_hash):
            # first lookup ran before the winner committed
            seen.append(tx_hash)
            return None if len(seen) == 1 else real(session, tx_hash)

        monkeypatch.setattr(membership, "find_by_tx", stale_lookup)
        result = admit(db, paid, settings, OTHER, TX)
        assert not result.created
        assert result.member.id == winner_id
        assert _count(db) == 1


class TestGuard:
    def test_is_member(self, db, paid, settings) -> None:
        assert not is_member(db, PAYER)
        admit(db, paid, settings, PAYER, TX)
        assert is_member(db, PAYER)
        assert is_member(db, PAYER.lower())

    def test_malformed_wallet_is_not_member(self, db) -> None:
        assert not is_member(db, "not-a-wallet")

    def test_require_member(self, db, paid, settings) -> None:
        with pytest.raises(MembershipRequired):
            require_member(db, PAYER)
        admit(db, paid, settings, PAYER, TX)
        assert require_member(db, PAYER) == PAYER.lower()
