import pytest

from referral_waitlist.features.waitlist.utils.ordering import chunked, has_room_between, midpoint
from referral_waitlist.features.waitlist.utils.referral_code_generator import (
    ALPHABET,
    code_fragments,
    generate_referral_code,
)


def test_midpoint_floors():
    assert midpoint(100, 200) == 150
    assert midpoint(100, 103) == 101
    assert midpoint(-2500, -1500) == -2000


def test_room_between_neighbours():
    assert has_room_between(100, 102)
    assert not has_room_between(100, 101)
    assert not has_room_between(100, 100)
    assert not has_room_between(300, 200)


def test_chunked_keeps_order_and_indexes_batches():
    batches = list(chunked([1, 2, 3, 4, 5], 2))

    assert batches == [(0, [1, 2]), (1, [3, 4]), (2, [5])]
    assert list(chunked([], 3)) == []


def test_chunked_rejects_empty_batches():
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_generate_referral_code():
    code = generate_referral_code()

    assert len(code) == 6
    assert set(code) <= set(ALPHABET)
    assert len(generate_referral_code(10)) == 10


def test_code_fragments_from_phone_number():
    assert code_fragments("+1 (415) 555-0132") == ("141555", "550132")
    assert code_fragments("4155550132") == ("415555", "550132")


def test_code_fragments_short_number():
    assert code_fragments("12-34") == ("", "")
    assert code_fragments("") == ("", "")
