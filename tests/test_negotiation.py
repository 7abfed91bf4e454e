"""Unit tests for the bid negotiation ledger."""

import copy
import random

import pytest

from src.domain.enums import BidStatus, CounterParty, RideStatus
from src.domain.errors import (
    BookingError,
    CapacityError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from src.domain.negotiation import BidLedger


class TestPlaceBid:
    def test_first_bid_opens_bidding(self, open_ride):
        ledger = BidLedger(open_ride, [])
        bid = ledger.place_bid(driver_id=7, amount=95.0, notes="Van with ramp")
        assert bid.status == BidStatus.PENDING
        assert bid.bid_count == 0
        assert bid.ride_id == open_ride.id
        assert open_ride.status == RideStatus.BIDDING

    def test_second_bid_keeps_bidding(self, open_ride, make_bid):
        open_ride.status = RideStatus.BIDDING
        ledger = BidLedger(open_ride, [make_bid(driver_id=7)])
        ledger.place_bid(driver_id=8, amount=100.0)
        assert open_ride.status == RideStatus.BIDDING
        assert len(ledger.bids) == 2

    def test_below_minimum_rejected(self, make_ride):
        ride = make_ride(id=1, suggested_price=None, rider_bid=None)
        with pytest.raises(ValidationError, match=r"at least \$10\.00"):
            BidLedger(ride, []).place_bid(driver_id=7, amount=9.99)

    def test_outside_band_rejected(self, open_ride):
        ledger = BidLedger(open_ride, [])
        with pytest.raises(ValidationError, match=r"between \$70\.00 and \$130\.00"):
            ledger.place_bid(driver_id=7, amount=65.0)
        with pytest.raises(ValidationError):
            ledger.place_bid(driver_id=7, amount=131.0)
        assert ledger.bids == []
        assert open_ride.status == RideStatus.REQUESTED

    def test_band_edges_accepted(self, open_ride):
        ledger = BidLedger(open_ride, [])
        ledger.place_bid(driver_id=7, amount=70.0)
        ledger.place_bid(driver_id=8, amount=130.0)

    def test_band_falls_back_to_rider_bid(self, make_ride):
        ride = make_ride(id=1, suggested_price=None, rider_bid=50.0)
        ledger = BidLedger(ride, [])
        with pytest.raises(ValidationError, match=r"between \$35\.00 and \$65\.00"):
            ledger.place_bid(driver_id=7, amount=70.0)

    @pytest.mark.parametrize(
        "status", [RideStatus.EDIT_PENDING, RideStatus.SCHEDULED, RideStatus.CANCELLED]
    )
    def test_closed_ride_rejected(self, open_ride, status):
        open_ride.status = status
        with pytest.raises(StateConflictError, match="no longer accepting bids"):
            BidLedger(open_ride, []).place_bid(driver_id=7, amount=100.0)

    def test_one_open_bid_per_driver(self, open_ride, make_bid):
        ledger = BidLedger(open_ride, [make_bid(driver_id=7)])
        with pytest.raises(StateConflictError, match="already bid"):
            ledger.place_bid(driver_id=7, amount=99.0)

    def test_driver_may_rebid_after_rejection(self, open_ride, make_bid):
        ledger = BidLedger(open_ride, [make_bid(driver_id=7, status=BidStatus.REJECTED)])
        ledger.place_bid(driver_id=7, amount=99.0)


class TestCounterOffer:
    def test_counter_updates_amount_and_round(self, open_ride, make_bid):
        bid = make_bid(amount=90.0)
        ledger = BidLedger(open_ride, [bid])
        ledger.counter_offer(bid.id, 85.0, CounterParty.RIDER)
        assert bid.amount == 85.0
        assert bid.bid_count == 1
        assert bid.status == BidStatus.COUNTERED
        assert bid.counter_party == CounterParty.RIDER

    def test_party_given_as_string(self, open_ride, make_bid):
        bid = make_bid()
        BidLedger(open_ride, [bid]).counter_offer(bid.id, 88.0, "driver")
        assert bid.counter_party == CounterParty.DRIVER

    def test_fourth_counter_is_capacity_error_and_changes_nothing(self, open_ride, make_bid):
        bid = make_bid(amount=90.0)
        ledger = BidLedger(open_ride, [bid])
        for amount, party in ((85.0, "rider"), (88.0, "driver"), (86.0, "rider")):
            ledger.counter_offer(bid.id, amount, party)
        assert bid.bid_count == 3

        before = copy.deepcopy(bid)
        with pytest.raises(CapacityError, match="Maximum 3 bids reached"):
            ledger.counter_offer(bid.id, 87.0, "driver")
        assert bid == before

    def test_capacity_error_is_not_a_state_conflict(self):
        assert not issubclass(CapacityError, StateConflictError)

    def test_counter_on_rejected_bid(self, open_ride, make_bid):
        bid = make_bid(status=BidStatus.REJECTED)
        with pytest.raises(StateConflictError):
            BidLedger(open_ride, [bid]).counter_offer(bid.id, 90.0, "rider")

    def test_counter_amount_validated(self, open_ride, make_bid):
        bid = make_bid(amount=90.0)
        with pytest.raises(ValidationError):
            BidLedger(open_ride, [bid]).counter_offer(bid.id, 5.0, "rider")
        assert bid.amount == 90.0
        assert bid.bid_count == 0

    def test_unknown_party(self, open_ride, make_bid):
        bid = make_bid()
        with pytest.raises(ValidationError):
            BidLedger(open_ride, [bid]).counter_offer(bid.id, 90.0, "dispatcher")

    def test_unknown_bid(self, open_ride):
        with pytest.raises(NotFoundError):
            BidLedger(open_ride, []).counter_offer(42, 90.0, "rider")


class TestAcceptBid:
    def test_accepting_schedules_ride_and_rejects_siblings(self, open_ride, make_bid):
        open_ride.status = RideStatus.BIDDING
        winner = make_bid(amount=80.0, driver_id=7)
        others = [make_bid(amount=95.0), make_bid(amount=110.0, status=BidStatus.COUNTERED)]
        ledger = BidLedger(open_ride, [winner, *others])

        ledger.accept_bid(winner.id)

        assert winner.status == BidStatus.ACCEPTED
        assert all(b.status == BidStatus.REJECTED for b in others)
        assert open_ride.final_price == 80.0
        assert open_ride.driver_id == 7
        assert open_ride.status == RideStatus.SCHEDULED

    def test_accept_straight_from_requested(self, open_ride, make_bid):
        bid = make_bid(amount=80.0)
        BidLedger(open_ride, [bid]).accept_bid(bid.id)
        assert open_ride.status == RideStatus.SCHEDULED

    def test_countered_bid_cannot_be_accepted_by_rider(self, open_ride, make_bid):
        bid = make_bid(amount=90.0)
        ledger = BidLedger(open_ride, [bid])
        ledger.counter_offer(bid.id, 95.0, "rider")
        before = copy.deepcopy((open_ride, ledger.bids))
        with pytest.raises(StateConflictError, match="no longer available for acceptance"):
            ledger.accept_bid(bid.id)
        assert (open_ride, ledger.bids) == before
        assert open_ride.status == RideStatus.REQUESTED

    def test_reaccepting_the_winner_is_a_no_op(self, open_ride, make_bid):
        bid, other = make_bid(amount=80.0, driver_id=7), make_bid()
        ledger = BidLedger(open_ride, [bid, other])
        ledger.accept_bid(bid.id)
        before = copy.deepcopy((open_ride, ledger.bids))

        assert ledger.accept_bid(bid.id) is bid

        assert (open_ride, ledger.bids) == before
        assert open_ride.status == RideStatus.SCHEDULED
        assert open_ride.final_price == 80.0

    def test_second_acceptance_is_state_conflict(self, open_ride, make_bid):
        first, second = make_bid(), make_bid()
        ledger = BidLedger(open_ride, [first, second])
        ledger.accept_bid(first.id)
        with pytest.raises(StateConflictError):
            ledger.accept_bid(second.id)
        assert [b.status for b in ledger.bids].count(BidStatus.ACCEPTED) == 1

    def test_rejected_bid_cannot_be_accepted(self, open_ride, make_bid):
        bid = make_bid(status=BidStatus.REJECTED)
        with pytest.raises(StateConflictError):
            BidLedger(open_ride, [bid]).accept_bid(bid.id)
        assert open_ride.status == RideStatus.REQUESTED
        assert open_ride.final_price is None


class TestDriverAccept:
    def test_driver_takes_rider_counter(self, open_ride, make_bid):
        bid, other = make_bid(amount=90.0, driver_id=7), make_bid()
        ledger = BidLedger(open_ride, [bid, other])
        ledger.counter_offer(bid.id, 84.0, "rider")

        ledger.driver_accept(bid.id)

        assert bid.status == BidStatus.ACCEPTED
        assert other.status == BidStatus.REJECTED
        assert open_ride.final_price == 84.0
        assert open_ride.driver_id == 7
        assert open_ride.status == RideStatus.SCHEDULED

    @pytest.mark.parametrize("party", [None, "driver"])
    def test_requires_rider_counter(self, open_ride, make_bid, party):
        bid = make_bid(amount=90.0)
        ledger = BidLedger(open_ride, [bid])
        if party:
            ledger.counter_offer(bid.id, 92.0, party)
        with pytest.raises(StateConflictError, match="countered by the rider"):
            ledger.driver_accept(bid.id)
        assert bid.status != BidStatus.ACCEPTED

    def test_retry_is_a_no_op(self, open_ride, make_bid):
        bid = make_bid(amount=90.0)
        ledger = BidLedger(open_ride, [bid])
        ledger.counter_offer(bid.id, 84.0, "rider")
        ledger.driver_accept(bid.id)
        assert ledger.driver_accept(bid.id) is bid
        assert open_ride.final_price == 84.0


class TestWithdrawBid:
    @pytest.mark.parametrize("status", [BidStatus.PENDING, BidStatus.COUNTERED])
    def test_owner_withdraws_open_bid(self, open_ride, make_bid, status):
        bid = make_bid(driver_id=7, status=status)
        BidLedger(open_ride, [bid]).withdraw_bid(bid.id, 7)
        assert bid.status == BidStatus.WITHDRAWN
        assert not bid.is_open

    def test_only_the_bidding_driver(self, open_ride, make_bid):
        bid = make_bid(driver_id=7)
        with pytest.raises(PermissionDeniedError, match="your own bids"):
            BidLedger(open_ride, [bid]).withdraw_bid(bid.id, 8)
        assert bid.status == BidStatus.PENDING

    @pytest.mark.parametrize(
        "status", [BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN, BidStatus.SELECTED]
    )
    def test_closed_bids_stay_put(self, open_ride, make_bid, status):
        bid = make_bid(driver_id=7, status=status)
        with pytest.raises(StateConflictError, match=f"status: {status.value}"):
            BidLedger(open_ride, [bid]).withdraw_bid(bid.id, 7)
        assert bid.status == status

    def test_driver_can_bid_again_after_withdrawing(self, open_ride, make_bid):
        bid = make_bid(driver_id=7, amount=120.0)
        ledger = BidLedger(open_ride, [bid])
        with pytest.raises(StateConflictError, match="already bid"):
            ledger.place_bid(driver_id=7, amount=95.0)

        ledger.withdraw_bid(bid.id, 7)
        fresh = ledger.place_bid(driver_id=7, amount=95.0)

        assert fresh.status == BidStatus.PENDING
        assert len(ledger.bids) == 2

    def test_withdrawn_bid_cannot_be_countered_or_accepted(self, open_ride, make_bid):
        bid = make_bid(driver_id=7)
        ledger = BidLedger(open_ride, [bid])
        ledger.withdraw_bid(bid.id, 7)
        with pytest.raises(StateConflictError):
            ledger.counter_offer(bid.id, 95.0, "rider")
        with pytest.raises(StateConflictError):
            ledger.accept_bid(bid.id)


class TestQueries:
    def test_list_ordered_by_creation(self, open_ride, make_bid):
        late, early = make_bid(), make_bid()
        late.created_at, early.created_at = early.created_at, late.created_at
        ledger = BidLedger(open_ride, [late, early])
        assert [b.id for b in ledger.list_bids()] == [early.id, late.id]

    def test_best_offer_is_lowest_pending(self, open_ride, make_bid):
        bids = [
            make_bid(amount=95.0),
            make_bid(amount=88.0),
            make_bid(amount=75.0, status=BidStatus.COUNTERED),
            make_bid(amount=72.0, status=BidStatus.REJECTED),
        ]
        assert BidLedger(open_ride, bids).best_offer().amount == 88.0

    def test_no_best_offer_without_pending_bids(self, open_ride):
        assert BidLedger(open_ride, []).best_offer() is None

    def test_close_open_bids(self, open_ride, make_bid):
        bids = [make_bid(), make_bid(status=BidStatus.COUNTERED), make_bid(status=BidStatus.REJECTED)]
        closed = BidLedger(open_ride, bids).close_open_bids()
        assert len(closed) == 2
        assert all(b.status == BidStatus.REJECTED for b in bids)


class TestNegotiationInvariants:
    """Randomised operation sequences; invariants checked after every step."""

    DRIVERS = range(1, 6)

    def _check(self, ledger: BidLedger):
        accepted = [b for b in ledger.bids if b.status == BidStatus.ACCEPTED]
        assert len(accepted) <= 1
        assert all(b.bid_count <= 3 for b in ledger.bids)
        if accepted:
            assert ledger.ride.status == RideStatus.SCHEDULED
            assert ledger.ride.final_price == accepted[0].amount
            assert not any(b.is_open for b in ledger.bids)

    @pytest.mark.parametrize("seed", range(25))
    def test_random_sequences(self, seed, make_ride):
        rng = random.Random(seed)
        ride = make_ride(id=1, suggested_price=100.0)
        ledger = BidLedger(ride, [])
        next_id = 1

        for _ in range(40):
            op = rng.choice(
                ["place", "counter", "counter", "accept", "driver_accept", "withdraw"]
            )
            snapshot = copy.deepcopy((ledger.ride, ledger.bids))
            try:
                if op == "place":
                    bid = ledger.place_bid(rng.choice(self.DRIVERS), rng.uniform(50, 150))
                    bid.id = next_id
                    next_id += 1
                elif ledger.bids:
                    target = rng.choice(ledger.bids).id
                    if op == "counter":
                        ledger.counter_offer(
                            target, rng.uniform(50, 150), rng.choice(["rider", "driver"])
                        )
                    elif op == "withdraw":
                        owner = ledger.get(target).driver_id
                        ledger.withdraw_bid(target, owner)
                    elif rng.random() < 0.3:
                        accept = ledger.accept_bid if op == "accept" else ledger.driver_accept
                        accept(target)
            except BookingError:
                assert (ledger.ride, ledger.bids) == snapshot
            self._check(ledger)
