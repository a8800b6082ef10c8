"""Tests for ranked view filtering, ordering, cap and pinning."""

from factories import addr, graduated_record, ts
from src.parsers.candidates import looks_like_address
from src.parsers.ranked_view import (
    RankedViewConfig,
    build_dex_paid_view,
    build_ranked_view,
    is_eligible,
)


def test_cap_drops_lowest_ranked():
    records = [graduated_record(addr(n), at=ts(n)) for n in range(61)]
    view = build_ranked_view(records, RankedViewConfig(cap=60))

    assert len(view) == 60
    # oldest (ts(0)) is the one dropped
    assert addr(0) not in {r.address for r in view}
    assert view[0].address == addr(60)


def test_sorted_descending_with_missing_time_last():
    newest = graduated_record(addr(1), at=ts(30))
    older = graduated_record(addr(2), at=ts(10))
    by_created = graduated_record(addr(3), graduated_at=None, created_at=ts(20))
    no_time = graduated_record(addr(4), graduated_at=None)

    view = build_ranked_view([no_time, older, by_created, newest], RankedViewConfig())
    assert [r.address for r in view] == [addr(1), addr(3), addr(2), addr(4)]


def test_ties_broken_by_address():
    b = graduated_record(addr(2), at=ts(5))
    a = graduated_record(addr(1), at=ts(5))
    view = build_ranked_view([b, a], RankedViewConfig())
    assert [r.address for r in view] == [addr(1), addr(2)]


def test_pinned_address_goes_first_and_cap_holds():
    records = [graduated_record(addr(n), at=ts(n)) for n in range(10)]
    config = RankedViewConfig(cap=5, pinned=addr(0))
    view = build_ranked_view(records, config)

    assert len(view) == 5
    assert view[0].address == addr(0)
    assert [r.address for r in view[1:]] == [addr(9), addr(8), addr(7), addr(6)]


def test_pinned_but_ineligible_is_not_forced_in():
    records = [graduated_record(addr(n), at=ts(n)) for n in range(3)]
    records.append(graduated_record(addr(50), confirmed_graduated=False))
    view = build_ranked_view(records, RankedViewConfig(pinned=addr(50)))
    assert addr(50) not in {r.address for r in view}


def test_eligibility_filters():
    config = RankedViewConfig(exclude={addr(2)}, allow={addr(6)})
    assert is_eligible(graduated_record(addr(1)), config)
    assert not is_eligible(graduated_record(addr(1), confirmed_graduated=False), config)
    assert not is_eligible(graduated_record(addr(2)), config)
    assert not is_eligible(graduated_record(addr(3), ticker="WBNB"), config)
    assert not is_eligible(graduated_record(addr(4), name=addr(4)), config)
    assert not is_eligible(graduated_record(addr(4), name="0x1234…abcd"), config)
    assert not is_eligible(
        graduated_record(addr(5), dex_url=None, liquidity_usd=0.0, volume_24h_usd=0.0), config
    )
    assert not is_eligible(graduated_record(addr(7), placeholder=True), config)


def test_allow_list_overrides_name_activity_and_placeholder():
    a = addr(6)
    config = RankedViewConfig(allow={a})
    record = graduated_record(
        a, name=a, placeholder=True, dex_url=None, liquidity_usd=0.0, volume_24h_usd=0.0
    )
    assert is_eligible(record, config)


def test_protected_ticker_is_case_insensitive():
    config = RankedViewConfig()
    assert not is_eligible(graduated_record(addr(1), ticker="usdt"), config)
    assert not is_eligible(graduated_record(addr(1), ticker="Cake"), config)


def test_dex_paid_view_newest_pair_first():
    newest = graduated_record(addr(1), dex_paid=True, pair_created_at=ts(30), dex_boosts=2)
    older = graduated_record(addr(2), dex_paid=True, pair_created_at=ts(10))
    no_pair = graduated_record(addr(3), dex_paid=True)
    unpaid = graduated_record(addr(4), pair_created_at=ts(50))
    placeholder = graduated_record(addr(5), dex_paid=True, placeholder=True, pair_created_at=ts(60))
    excluded = graduated_record(addr(6), dex_paid=True, pair_created_at=ts(40))

    view = build_dex_paid_view(
        [no_pair, older, unpaid, placeholder, excluded, newest],
        RankedViewConfig(exclude={addr(6)}),
    )
    assert [r.address for r in view] == [addr(1), addr(2), addr(3)]
    assert view[0].dex_boosts == 2


def test_hex_looking_names_are_not_placeholders():
    assert looks_like_address(addr(1))
    assert looks_like_address("0x1234...7777")
    assert looks_like_address("0x1234…7777")
    assert looks_like_address("")
    assert not looks_like_address("0xdead")
    assert not looks_like_address("0x1234")
    assert not looks_like_address("0xBEEF Coin")
    assert is_eligible(graduated_record(addr(7), name="0xdead"), RankedViewConfig())
