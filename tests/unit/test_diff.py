from __future__ import annotations

from journeyboard.board.diff import diff_cards


def test_diff_sorts_cards_into_four_buckets() -> None:
    existing = [
        {"id": "1", "title": "A", "description": "x"},
        {"id": "2", "title": "B", "description": "y"},
    ]
    incoming = [{"title": "a", "description": "X "}, {"title": "C", "description": "z"}]

    diff = diff_cards(existing, incoming)

    assert [card["title"] for card in diff.added] == ["C"]
    assert diff.modified == []
    assert [card["id"] for card in diff.removed] == ["2"]
    assert [card["id"] for card in diff.unchanged] == ["1"]
    assert diff.has_changes


def test_description_change_is_a_modification() -> None:
    existing = [{"id": "1", "titulo": "Ligar", "descricao": "antes"}]
    diff = diff_cards(existing, [{"what": "LIGAR", "why": "Depois"}])

    assert len(diff.modified) == 1
    change = diff.modified[0]
    assert change.card_id == "1"
    assert change.old_description == "antes"
    assert change.new_description == "Depois"
    assert diff.counts() == {"added": 0, "modified": 1, "removed": 0, "unchanged": 0}


def test_deprecated_cards_are_ignored() -> None:
    existing = [{"id": "1", "title": "A", "deprecated": True}]
    diff = diff_cards(existing, [{"title": "A"}])
    assert len(diff.added) == 1
    assert diff.removed == []


def test_identical_lists_have_no_changes() -> None:
    cards = [{"title": "A", "description": "x"}]
    diff = diff_cards(cards, [dict(card) for card in cards])
    assert not diff.has_changes
    assert len(diff.unchanged) == 1


def test_blank_titles_match_the_default_title() -> None:
    existing = [{"id": "1", "title": "Ação"}, {"id": "2", "title": "A"}]
    diff = diff_cards(existing, [{"title": "A"}, {"titulo": "  "}], default_title="Ação")

    assert not diff.has_changes
    assert [card["id"] for card in diff.unchanged] == ["2", "1"]


def test_duplicate_incoming_titles_keep_the_first_card() -> None:
    existing = [{"id": "1", "title": "A", "description": "x"}]
    diff = diff_cards(existing, [{"title": "A", "description": "x"}, {"title": "a", "description": "y"}])

    assert not diff.has_changes
    assert diff.counts() == {"added": 0, "modified": 0, "removed": 0, "unchanged": 1}
