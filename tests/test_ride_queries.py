import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.domain import lifecycle
from app.domain.exceptions import ValidationError
from app.domain.ride import PaymentMethod


MAY_FIRST = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)


async def _store(db, repository, *rides):
    for ride in rides:
        await repository.add(db, ride)
    await db.commit()


class TestSearch:

    @pytest.fixture
    async def rides(self, db, repository, make_ride, owner):
        morning = make_ride(owner_id=owner.id, start_time=MAY_FIRST)
        evening = make_ride(owner_id=owner.id, start_time=MAY_FIRST.replace(hour=18, minute=30))
        next_day = make_ride(owner_id=owner.id, start_time=MAY_FIRST + timedelta(days=1))
        elsewhere = make_ride(origin="Hamburg", destination="Kiel", start_time=MAY_FIRST)
        await _store(db, repository, morning, evening, next_day, elsewhere)
        return morning, evening, next_day, elsewhere

    async def test_by_route(self, query_service, db, rides):
        found = await query_service.search_rides(db, origin="berlin", destination="leipzig")
        assert [r.id for r in found] == [r.id for r in rides[:3]]

    async def test_by_date_and_time_window(self, query_service, db, rides):
        morning = rides[0]

        found = await query_service.search_rides(db, on_date="2030-05-01", time_from="07:00", time_to="08:00")

        assert sorted(r.id for r in found) == sorted([morning.id, rides[3].id])

    async def test_open_ended_time_window(self, query_service, db, rides):
        found = await query_service.search_rides(db, origin="Berlin", on_date="2030-05-01", time_from="12:00")
        assert [r.id for r in found] == [rides[1].id]

    @pytest.mark.parametrize("params", [
        {"on_date": "01.05.2030"},
        {"time_from": "25:00"},
        {"time_to": "8am"},
    ])
    async def test_malformed_filters(self, query_service, db, params):
        with pytest.raises(ValidationError):
            await query_service.search_rides(db, **params)

    async def test_by_vehicle_type(self, query_service, db, rides):
        found = await query_service.search_rides(db, vehicle_type="sedan")
        # the Hamburg owner is unknown to the user service and drops out
        assert [r.id for r in found] == [r.id for r in rides[:3]]

        assert await query_service.search_rides(db, vehicle_type="Van") == []


async def test_listings_carry_owner_rating(query_service, ratings, db, repository, make_ride, owner):
    ratings.ratings[owner.id] = 4.7
    rated = make_ride(owner_id=owner.id)
    unrated = make_ride()
    await _store(db, repository, rated, unrated)

    page = await query_service.get_all_rides(10, 0, db)

    by_id = {r.id: r for r in page.rides}
    assert page.total == 2
    assert by_id[rated.id].owner_rating == 4.7
    assert by_id[unrated.id].owner_rating == 0.0


async def test_public_rides_hide_full_and_finished(query_service, db, repository, make_ride):
    open_ride = make_ride()
    full = make_ride(total_seats=1)
    passenger = uuid.uuid4()
    full.request_seats(passenger, 1)
    full.accept_request(passenger)
    canceled = make_ride()
    lifecycle.cancel_ride(canceled, canceled.owner_id, None)
    await _store(db, repository, open_ride, full, canceled)

    found = await query_service.get_public_rides(None, None, db)

    assert [r.id for r in found] == [open_ride.id]


async def test_my_rides_groups_by_membership(query_service, db, repository, make_ride, passenger):
    approved = make_ride()
    approved.request_seats(passenger.id, 1)
    approved.accept_request(passenger.id)
    pending = make_ride()
    pending.request_seats(passenger.id, 2)
    rejected = make_ride()
    rejected.request_seats(passenger.id, 1)
    rejected.reject_request(passenger.id)
    withdrawn = make_ride()
    withdrawn.request_seats(passenger.id, 1)
    withdrawn.cancel_own_request(passenger.id)
    await _store(db, repository, approved, pending, rejected, withdrawn)

    mine = await query_service.get_my_rides(passenger.id, 20, 0, db)

    assert [r.id for r in mine.approved_rides] == [approved.id]
    assert [r.id for r in mine.pending_requests] == [pending.id]
    assert [r.id for r in mine.canceled_rides] == [rejected.id]
    assert (mine.total_approved, mine.total_pending, mine.total_canceled) == (1, 1, 1)


async def test_my_offers_pages(query_service, db, repository, make_ride, owner):
    offers = [make_ride(owner_id=owner.id, start_time=MAY_FIRST + timedelta(days=i)) for i in range(3)]
    await _store(db, repository, *offers, make_ride())

    page = await query_service.get_my_offers(owner.id, 2, 2, db)

    assert page.total == 3
    assert [r.id for r in page.rides] == [offers[0].id]


class TestEarnings:

    @pytest.fixture
    async def paid_rides(self, db, repository, make_ride, owner):
        today = datetime(2030, 5, 1, 10, 0, tzinfo=timezone.utc)
        yesterday = today - timedelta(days=1)
        cash, card, unpaid, late = (uuid.uuid4() for _ in range(4))

        ride = make_ride(owner_id=owner.id, total_seats=4)
        ride.request_seats(cash, 1, PaymentMethod.CASH)
        ride.request_seats(card, 2, PaymentMethod.CARD)
        ride.request_seats(unpaid, 1, PaymentMethod.CARD)
        for passenger_id in (cash, card, unpaid):
            ride.accept_request(passenger_id)
        ride.mark_payment_collected(cash, Decimal("12.50"), now=today)
        ride.mark_payment_collected(card, Decimal("25.00"), now=today)

        earlier = make_ride(owner_id=owner.id)
        earlier.request_seats(late, 1, PaymentMethod.CASH)
        earlier.accept_request(late)
        earlier.mark_payment_collected(late, Decimal("10.00"), now=yesterday)

        someone_else = make_ride()
        someone_else.request_seats(cash, 1)
        someone_else.accept_request(cash)
        someone_else.mark_payment_collected(cash, Decimal("99"), now=today)

        await _store(db, repository, ride, earlier, someone_else)
        return today.date()

    async def test_today(self, query_service, db, owner, paid_rides):
        earnings = await query_service.get_today_earnings(owner.id, db, today=paid_rides)

        assert earnings.cash_earnings == Decimal("12.50")
        assert earnings.card_earnings == Decimal("25.00")
        assert earnings.total_earnings == Decimal("37.50")
        assert (earnings.cash_payments_count, earnings.card_payments_count) == (1, 1)
        assert earnings.day == date(2030, 5, 1)

    async def test_total(self, query_service, db, owner, paid_rides):
        earnings = await query_service.get_total_earnings(owner.id, db)

        assert earnings.cash_earnings == Decimal("22.50")
        assert earnings.total_earnings == Decimal("47.50")
        assert earnings.cash_payments_count == 2
        assert earnings.day is None

    async def test_no_rides_means_zero(self, query_service, db):
        earnings = await query_service.get_total_earnings(uuid.uuid4(), db)
        assert earnings.total_earnings == 0
        assert earnings.cash_payments_count == earnings.card_payments_count == 0
