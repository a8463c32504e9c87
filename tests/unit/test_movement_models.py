"""Tests for Movement, pagination models and the movement index."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.domain.services.movement_index import MovementIndex
from src.models.movement import Direction, MovementOrigin, Provider, stable_id
from src.models.page import MarkerPairCursor, MovementPage, OpaqueCursor, StatementFilters
from src.models.subscription import Subscription, SubscriptionContext, tenant_room


BASE = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestProvider:
    """Provider tag parsing."""

    @pytest.mark.parametrize("tag,expected", [
        ("bmp", Provider.BMP),
        ("BMP-531", Provider.BMP_531),
        ("bmp_531", Provider.BMP_531),
        (" bitso ", Provider.BITSO),
    ])
    def test_parse(self, tag, expected) -> None:
        assert Provider.parse(tag) is expected

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError):
            Provider.parse("itau")


class TestMovementKeys:
    """Merge keys and event identity."""

    def test_natural_key_preferred(self, make_movement) -> None:
        movement = make_movement(id="42", e2e="E123")
        assert movement.merge_key == ("e2e", "E123")
        assert movement.provider_key == ("bmp", "42")

    def test_provider_key_without_e2e(self, make_movement) -> None:
        movement = make_movement(id="42", provider=Provider.BITSO)
        assert movement.natural_key is None
        assert movement.merge_key == ("bitso", "42")

    def test_same_event_by_e2e_across_providers(self, make_movement) -> None:
        a = make_movement(id="1", provider=Provider.BMP, e2e="E1")
        b = make_movement(id="2", provider=Provider.BITSO, e2e="E1")
        assert a.same_event(b)

    def test_different_e2e_same_id_not_same_event(self, make_movement) -> None:
        a = make_movement(id="1", e2e="E1")
        b = make_movement(id="1", e2e="E2")
        assert not a.same_event(b)

    def test_provider_key_when_one_side_lacks_e2e(self, make_movement) -> None:
        a = make_movement(id="1", e2e="E1")
        b = make_movement(id="1")
        assert a.same_event(b)

    def test_differs_from_lists_settlement_fields(self, make_movement) -> None:
        pushed = make_movement(amount="150.00", status="pending")
        polled = make_movement(amount="149.50", status="completed")
        assert pushed.differs_from(polled) == ("amount", "status")

    def test_with_origin(self, make_movement) -> None:
        pushed = make_movement(origin=MovementOrigin.PUSH)
        assert pushed.is_confirmed is False
        assert pushed.with_origin(MovementOrigin.POLL).is_confirmed is True

    def test_raw_ignored_in_equality(self, make_movement) -> None:
        from dataclasses import replace
        a = make_movement()
        assert replace(a, raw={"x": 1}) == a

    def test_stable_id_deterministic(self) -> None:
        raw = {"valor": "10,00", "descricao": "PIX"}
        assert stable_id(raw) == stable_id(dict(reversed(list(raw.items()))))
        assert stable_id(raw).startswith("h:")
        assert stable_id(raw) != stable_id({"valor": "10,01", "descricao": "PIX"})


class TestPageModels:
    """Filters, cursors and pages."""

    def test_filters_reject_inverted_range(self) -> None:
        with pytest.raises(ValueError):
            StatementFilters(date_from=date(2024, 3, 15), date_to=date(2024, 3, 1))

    def test_filters_equality(self) -> None:
        assert StatementFilters(date(2024, 3, 1)) == StatementFilters(date(2024, 3, 1))
        assert StatementFilters().is_empty

    def test_cursors_hashable_and_tagged(self) -> None:
        assert OpaqueCursor(Provider.BMP, "c1") == OpaqueCursor(Provider.BMP, "c1")
        assert OpaqueCursor(Provider.BMP, "c1") != OpaqueCursor(Provider.BMP_531, "c1")
        assert len({MarkerPairCursor(Provider.BITSO, "a", "b"), MarkerPairCursor(Provider.BITSO, "a", "b")}) == 1

    def test_marker_pair_empty(self) -> None:
        assert MarkerPairCursor(Provider.BITSO).is_empty
        assert not MarkerPairCursor(Provider.BITSO, pay_outs_marker="x").is_empty

    def test_page_len(self, make_movement) -> None:
        assert len(MovementPage([make_movement()])) == 1
        assert len(MovementPage()) == 0


class TestSubscriptionRooms:
    """Rooms required per subscription."""

    def test_api_joins_platform_only(self) -> None:
        assert Subscription(SubscriptionContext.API).rooms() == ("platform",)

    def test_tenant_room(self) -> None:
        assert Subscription(SubscriptionContext.TCR, tenant_id=2).rooms() == ("platform", "tenant:2")
        assert tenant_room(3) == "tenant:3"


class TestMovementIndex:
    """At most one entry per event."""

    def test_upsert_inserts_and_replaces(self, make_movement) -> None:
        index = MovementIndex()
        first = make_movement(id="1", amount="10")
        assert index.upsert(first) is None

        replaced = index.upsert(make_movement(id="1", amount="11"))

        assert replaced == first
        assert len(index) == 1
        assert index.values()[0].amount == Decimal("11")

    def test_match_by_natural_key(self, make_movement) -> None:
        index = MovementIndex()
        index.upsert(make_movement(id="push-1", provider=Provider.BITSO, e2e="E1"))
        index.upsert(make_movement(id="stmt-9", provider=Provider.BITSO, e2e="E1"))

        assert len(index) == 1
        assert index.get(("e2e", "E1")).id == "stmt-9"
        assert index.get(("bitso", "push-1")) is None

    def test_e2e_added_later_matches_provider_key(self, make_movement) -> None:
        index = MovementIndex()
        index.upsert(make_movement(id="7"))
        index.upsert(make_movement(id="7", e2e="E7"))

        assert len(index) == 1
        assert index.get(("e2e", "E7")) is not None

    def test_record_bridging_two_entries_collapses_them(self, make_movement) -> None:
        index = MovementIndex()
        index.upsert(make_movement(id="1", provider=Provider.BMP, e2e="E1"))
        index.upsert(make_movement(id="42", provider=Provider.BITSO))
        assert len(index) == 2

        index.upsert(make_movement(id="42", provider=Provider.BITSO, e2e="E1", amount="12"))

        assert len(index) == 1
        stored = index.sorted_desc()
        assert stored[0].provider_key == ("bitso", "42")
        assert index.get(("bitso", "42")) is stored[0]
        assert index.get(("e2e", "E1")) is stored[0]
        assert index.get(("bmp", "1")) is None
        assert not [
            (a.provider_key, b.provider_key)
            for i, a in enumerate(stored) for b in stored[i + 1:] if a.same_event(b)
        ]

    def test_sorted_desc_with_ties(self, make_movement) -> None:
        index = MovementIndex()
        index.upsert(make_movement(id="a", at=BASE))
        index.upsert(make_movement(id="old", at=BASE - timedelta(hours=1)))
        index.upsert(make_movement(id="b", at=BASE))

        assert [m.id for m in index.sorted_desc()] == ["b", "a", "old"]

    def test_remove_and_clear(self, make_movement) -> None:
        index = MovementIndex()
        movement = make_movement(id="x", e2e="EX")
        index.upsert(movement)

        assert movement in index
        assert index.remove(movement) == movement
        assert movement not in index
        assert index.remove(movement) is None

        index.upsert(movement)
        index.clear()
        assert len(index) == 0

    def test_direction_enum_values(self) -> None:
        assert Direction("CREDIT") is Direction.CREDIT
