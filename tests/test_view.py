# Tsundoku test scripts
from __future__ import annotations

import pytest

from td_platform.engine import ListEntry, ListFilter, ListSort, ListValidationError, derive, stats


def _e(k: str, **kw) -> ListEntry:
    base = {"id": k, "catalog_item_id": f"t-{k}", "status_id": "completed", "media_type": "anime"}
    base.update(kw)
    return ListEntry.from_dict(base)


ENTRIES = (
    _e("e1", title="Monster", score=9, progress=74, sort_order=4, tags=["thriller"], created_at="2025-01-01"),
    _e("e2", title="Mushishi", score=8, progress=26, sort_order=3, notes="calm", created_at="2025-02-01"),
    _e("e3", title="Naruto", score=7, progress=220, sort_order=2, tags=["shonen"], created_at="2025-03-01"),
    _e("e4", title="Berserk", status_id="watching", score=10, progress=10, sort_order=1, created_at="2025-04-01"),
    _e("e5", title="akira", score=None, progress=1, sort_order=0, tags=["classic", "thriller"]),
    _e("m1", title="Vagabond", media_type="manga", status_id="reading", score=8, progress=300, sort_order=5),
)


def test_status_and_score_filter() -> None:
    flt = ListFilter.build(status="completed", score={"min": 8})
    assert [e.id for e in derive(ENTRIES, flt)] == ["e2", "e1"]


def test_free_text_matches_title_notes_and_tags() -> None:
    assert [e.id for e in derive(ENTRIES, ListFilter.build(search="MUSH"))] == ["e2"]
    assert [e.id for e in derive(ENTRIES, ListFilter.build(search="calm"))] == ["e2"]
    assert {e.id for e in derive(ENTRIES, ListFilter.build(search="thrill"))} == {"e1", "e5"}


def test_free_text_does_not_span_fields() -> None:
    entries = (_e("x1", title="Bleach", notes="ok", tags=["shonen", "swords"]),)
    assert derive(entries, ListFilter.build(search="h o")) == ()
    assert derive(entries, ListFilter.build(search="n s")) == ()
    assert [e.id for e in derive(entries, ListFilter.build(search="ach"))] == ["x1"]


def test_tags_any_of_and_media_type() -> None:
    flt = ListFilter.build(tags=["shonen", "classic"])
    assert {e.id for e in derive(ENTRIES, flt)} == {"e3", "e5"}
    assert [e.id for e in derive(ENTRIES, ListFilter.build(media_type="manga"))] == ["m1"]
    assert len(derive(ENTRIES, ListFilter.build(media_type="both"))) == len(ENTRIES)


def test_progress_and_created_ranges() -> None:
    flt = ListFilter.build(progress={"min": 20, "max": 100})
    assert {e.id for e in derive(ENTRIES, flt)} == {"e1", "e2"}
    flt = ListFilter.build(created={"start": "2025-02-01", "end": "2025-03-31"})
    assert {e.id for e in derive(ENTRIES, flt)} == {"e2", "e3"}


def test_missing_score_counts_as_zero_in_range() -> None:
    flt = ListFilter.build(score={"max": 0})
    assert [e.id for e in derive(ENTRIES, flt)] == ["e5"]


def test_ties_break_on_id() -> None:
    shuffled = (ENTRIES[5], ENTRIES[1], ENTRIES[0], ENTRIES[3], ENTRIES[2], ENTRIES[4])
    a = derive(ENTRIES, None, ListSort("status", "asc"))
    b = derive(shuffled, None, ListSort("status", "asc"))
    assert [e.id for e in a] == [e.id for e in b]
    assert [e.id for e in a] == ["e1", "e2", "e3", "e5", "m1", "e4"]


def test_nulls_sort_lowest() -> None:
    asc = [e.id for e in derive(ENTRIES, None, ListSort("score", "asc"))]
    desc = [e.id for e in derive(ENTRIES, None, ListSort("score", "desc"))]
    assert asc[0] == "e5"
    assert desc[-1] == "e5"
    assert asc == ["e5", "e3", "e2", "m1", "e1", "e4"]
    assert desc == ["e4", "e1", "e2", "m1", "e3", "e5"]


def test_title_sort_is_case_insensitive() -> None:
    ids = [e.id for e in derive(ENTRIES, None, ListSort("title"))]
    assert ids == ["e5", "e4", "e1", "e2", "e3", "m1"]


def test_equal_inputs_return_same_object() -> None:
    flt = ListFilter.build(status=["completed", "watching"])
    srt = ListSort("progress", "desc")
    first = derive(ENTRIES, flt, srt)
    again = derive(list(ENTRIES), ListFilter.build(status=["watching", "completed"]), ListSort("progress", "desc"))
    assert again is first


def test_unknown_sort_field_rejected() -> None:
    with pytest.raises(ListValidationError):
        derive(ENTRIES, None, ListSort("popularity"))
    with pytest.raises(ListValidationError):
        derive(ENTRIES, None, ListSort("score", "sideways"))  # type: ignore[arg-type]


def test_stats() -> None:
    out = stats(ENTRIES, "anime")
    assert out["total"] == 5
    assert out["status_counts"]["completed"] == 4
    assert out["status_counts"]["watching"] == 1
    assert "reading" not in out["status_counts"]
    assert out["scored"] == 4
    assert out["average_score"] == 8.5
    assert out["total_hours"] == round((74 + 26 + 220 + 10 + 1) * 24 / 60, 1)

    both = stats(ENTRIES)
    assert both["total"] == 6
    assert both["status_counts"]["reading"] == 1
    assert stats(())["average_score"] == 0.0
