from unittest.mock import MagicMock

import pytest

from finboard.errors import DuplicateWidgetError, UnknownProviderError
from finboard.models import WidgetConfig, WidgetLayout, WidgetType, WidgetUpdate
from finboard.storage import DashboardStorage
from finboard.widget_store import WidgetStore


@pytest.fixture
def storage(tmp_path):
    s = DashboardStorage(tmp_path / "finboard.json")
    yield s
    s.close()


def card(**kwargs) -> WidgetConfig:
    return WidgetConfig(type=WidgetType.CARD, title="Card", api_endpoint="https://api.test/q", **kwargs)


def test_create_assigns_id_and_placement():
    store = WidgetStore()
    table = store.create(WidgetConfig(type=WidgetType.TABLE, title="T"))
    chart = store.create(WidgetConfig(type=WidgetType.CHART, title="C"))
    third = store.create(WidgetConfig(type=WidgetType.TABLE, title="T2"))

    assert table.id and table.id != chart.id
    assert table.layout.id == table.id
    assert (table.layout.x, table.layout.y, table.layout.w, table.layout.h) == (0, 0, 6, 4)
    assert (chart.layout.x, chart.layout.y) == (6, 0)
    assert (third.layout.x, third.layout.y) == (0, 4)


def test_fundamentals_card_is_compact():
    store = WidgetStore()
    widget = store.create(card(variant="fundamentals"))
    assert (widget.layout.w, widget.layout.h) == (3, 2)


def test_create_with_existing_id_is_rejected():
    store = WidgetStore()
    store.create(card(id="w1"))
    with pytest.raises(DuplicateWidgetError):
        store.create(card(id="w1"))


def test_update_merges_fields_and_keeps_layout():
    store = WidgetStore()
    widget = store.create(card(id="w1"))
    updated = store.update("w1", WidgetUpdate(title="Renamed", selected_fields=["a.b", "c"]))

    assert updated.title == "Renamed"
    assert updated.selected_fields == ["a.b", "c"]
    assert updated.api_endpoint == widget.api_endpoint
    assert updated.layout == widget.layout


def test_update_with_explicit_layout():
    store = WidgetStore()
    store.create(card(id="w1"))
    updated = store.update("w1", WidgetUpdate(layout=WidgetLayout(x=9, y=2, w=3, h=3)))
    assert (updated.layout.id, updated.layout.x, updated.layout.y) == ("w1", 9, 2)


def test_update_unknown_id_is_a_noop():
    store = WidgetStore()
    store.create(card(id="w1"))
    before = store.list()
    assert store.update("missing", WidgetUpdate(title="x")) is None
    assert store.list() == before


def test_remove_then_update_is_a_noop():
    store = WidgetStore()
    store.create(card(id="w1"))
    assert store.remove("w1") is True
    assert store.remove("w1") is False
    assert store.update("w1", WidgetUpdate(title="x")) is None
    assert store.list() == []


def test_apply_layout_ignores_unknown_ids():
    store = WidgetStore()
    store.create(card(id="w1"))
    store.create(card(id="w2"))
    applied = store.apply_layout([
        WidgetLayout(id="w2", x=0, y=5, w=4, h=2),
        WidgetLayout(id="ghost", x=1, y=1, w=1, h=1),
    ])
    assert applied == 1
    assert store.get("w2").layout == WidgetLayout(id="w2", x=0, y=5, w=4, h=2)
    assert store.get("w1").layout.y == 0


def test_listeners_see_polling_changes():
    store = WidgetStore()
    listener = MagicMock()
    store.subscribe(listener)
    store.create(card(id="w1"))
    store.update("w1", WidgetUpdate(refresh_interval=120, title="t"))
    store.remove("w1")

    events = [c.args[0] for c in listener.call_args_list]
    assert events == ["created", "updated", "removed"]
    changed = listener.call_args_list[1].args[3]
    assert changed == frozenset({"refresh_interval", "title"})


def test_watchlist_symbols_are_uppercased_and_unique():
    store = WidgetStore()
    store.create(card(id="wl", watchlist_symbols=["IBM"]))
    store.add_watchlist_symbol("wl", "aapl")
    store.add_watchlist_symbol("wl", "AAPL")
    assert store.get("wl").watchlist_symbols == ["IBM", "AAPL"]
    store.remove_watchlist_symbol("wl", "ibm")
    assert store.get("wl").watchlist_symbols == ["AAPL"]


def test_api_keys():
    store = WidgetStore()
    store.set_api_key("finnhub", "abc")
    assert store.api_keys.finnhub == "abc"
    with pytest.raises(UnknownProviderError):
        store.set_api_key("bloomberg", "x")

    store.seed_api_keys({"finnhub": "other", "alphavantage": "av"})
    assert store.api_keys.finnhub == "abc"
    assert store.api_keys.alphavantage == "av"


def test_demo_widgets():
    store = WidgetStore()
    chart = store.add_demo_widget("chart")
    fundamentals = store.add_demo_widget("fundamentals")
    assert chart.id.startswith("demo-chart-")
    assert chart.selected_fields == ["close", "open", "high", "low"]
    assert (fundamentals.layout.x, fundamentals.layout.y, fundamentals.layout.w, fundamentals.layout.h) == (6, 0, 3, 2)
    with pytest.raises(ValueError):
        store.add_demo_widget("crypto")


def test_persistence_round_trip(storage):
    store = WidgetStore(storage)
    store.create(WidgetConfig(id="t", type=WidgetType.TABLE, title="T", selected_fields=["b", "a"]))
    store.create(card(id="c", selected_fields=["x.y"], watchlist_symbols=["IBM"]))
    store.apply_layout([WidgetLayout(id="c", x=6, y=8, w=3, h=3)])
    store.set_api_key("alphavantage", "key")

    reloaded = WidgetStore(storage)
    assert reloaded.list() == store.list()
    assert [w.id for w in reloaded.list()] == ["t", "c"]
    assert reloaded.get("t").selected_fields == ["b", "a"]
    assert reloaded.get("c").layout == WidgetLayout(id="c", x=6, y=8, w=3, h=3)
    assert reloaded.api_keys.alphavantage == "key"
