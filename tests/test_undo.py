"""Tests for the undo ledger."""

import pytest

from flickswiper.errors import PersistenceError
from flickswiper.library import ItemStore
from flickswiper.models import Direction, UndoEntry
from flickswiper.undo import UndoLedger

from conftest import make_media


@pytest.fixture
def library(store):
    return ItemStore(store)


def _classify(library, ledger, item, direction):
    result = library.classify(item, direction)
    if result.changed:
        ledger.record(UndoEntry(item, direction, result.previous_direction))
    return result


def test_undo_creation_deletes_record(library):
    ledger = UndoLedger(library)
    inception = make_media(27205, title="Inception")
    _classify(library, ledger, inception, Direction.SEEN)

    assert ledger.undo_last() == inception
    assert library.get("movie_27205") is None
    assert not library.is_classified("movie_27205")
    assert not ledger.can_undo


def test_undo_transition_restores_previous(library):
    """Skip then watchlist; undo goes back to skipped, then to nothing."""
    ledger = UndoLedger(library)
    inception = make_media(27205, title="Inception")

    _classify(library, ledger, inception, Direction.SKIPPED)
    _classify(library, ledger, inception, Direction.WATCHLIST)
    assert library.get("movie_27205").direction == Direction.WATCHLIST

    ledger.undo_last()
    assert library.get("movie_27205").direction == Direction.SKIPPED

    ledger.undo_last()
    assert library.get("movie_27205") is None
    assert ledger.undo_last() is None


def test_ignored_demotion_is_not_recorded(library):
    ledger = UndoLedger(library)
    item = make_media(1)
    _classify(library, ledger, item, Direction.SEEN)
    _classify(library, ledger, item, Direction.SKIPPED)

    assert len(ledger) == 1
    ledger.undo_last()
    assert library.get(item.unique_id) is None


def test_restore_keeps_other_fields(library):
    ledger = UndoLedger(library)
    item = make_media(1)
    _classify(library, ledger, item, Direction.WATCHLIST)
    library.set_personal_rating(item.unique_id, 4)
    _classify(library, ledger, item, Direction.SEEN)

    ledger.undo_last()
    record = library.get(item.unique_id)
    assert record.direction == Direction.WATCHLIST
    assert record.personal_rating == 4


def test_capacity_drops_oldest(library):
    ledger = UndoLedger(library, capacity=3)
    items = [make_media(i) for i in range(5)]
    for item in items:
        _classify(library, ledger, item, Direction.SEEN)

    assert len(ledger) == 3
    undone = [ledger.undo_last() for _ in range(4)]
    assert undone == [items[4], items[3], items[2], None]
    assert library.all_classified_unique_ids() == {"movie_0", "movie_1"}


def test_missing_target_is_discarded(library):
    ledger = UndoLedger(library)
    item = make_media(1)
    _classify(library, ledger, item, Direction.SKIPPED)
    _classify(library, ledger, item, Direction.SEEN)
    library.remove(item.unique_id)

    # Entry is consumed even though the record is gone
    assert ledger.undo_last() == item
    assert len(ledger) == 1
    assert library.get(item.unique_id) is None


def test_failed_undo_discards_entry(library, store, monkeypatch):
    """A failed inversion consumes the entry and leaves the record as it was."""
    ledger = UndoLedger(library)
    first = make_media(1)
    second = make_media(2)
    _classify(library, ledger, first, Direction.SEEN)
    _classify(library, ledger, second, Direction.SKIPPED)
    _classify(library, ledger, second, Direction.SEEN)

    def fail(*args, **kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "update_classified", fail)
    with pytest.raises(PersistenceError):
        ledger.undo_last()
    monkeypatch.undo()

    assert len(ledger) == 2
    assert library.get("movie_2").direction == Direction.SEEN

    # The next entry is the creation of the same record
    assert ledger.undo_last() == second
    assert library.get("movie_2") is None

    monkeypatch.setattr(store, "delete_classified", fail)
    with pytest.raises(PersistenceError):
        ledger.undo_last()
    monkeypatch.undo()

    assert not ledger.can_undo
    assert library.is_classified("movie_1")
    assert library.get("movie_1").direction == Direction.SEEN


def test_clear(library):
    ledger = UndoLedger(library)
    _classify(library, ledger, make_media(1), Direction.SEEN)
    ledger.clear()
    assert not ledger.can_undo


def test_invalid_capacity(library):
    with pytest.raises(ValueError):
        UndoLedger(library, capacity=0)
