"""Tests for search history and favorites."""

import pytest

from prompter.entities import Artifact, Source
from prompter.library_cache import LibraryCache


def make_artifact(title):
    return Artifact(
        title=title,
        prompt="p",
        example="{}",
        sources=[Source(title="Docs", uri="https://docs.example.com")],
    )


@pytest.fixture
def library():
    return LibraryCache()


class TestSearchHistory:
    def test_most_recent_first(self, library):
        library.record_search("orders")
        library.record_search("invoices")
        assert library.history() == ["invoices", "orders"]

    def test_duplicates_move_to_front(self, library):
        for q in ["a", "b", "c", "a"]:
            library.record_search(q)
        assert library.history() == ["a", "c", "b"]

    def test_capped_at_ten(self, library):
        for i in range(15):
            library.record_search(f"q{i}")
        history = library.history()
        assert len(history) == 10
        assert history[0] == "q14"
        assert history[-1] == "q5"

    def test_blank_queries_are_ignored(self, library):
        library.record_search("   ")
        assert library.history() == []

    def test_clear(self, library):
        library.record_search("orders")
        library.clear_history()
        assert library.history() == []


class TestFavorites:
    def test_toggle_saves_then_removes(self, library):
        saved = library.toggle_favorite(make_artifact("Order"))
        assert saved is not None
        assert saved.id
        assert saved.saved_at > 0
        assert library.is_favorite("Order")

        assert library.toggle_favorite(make_artifact("Order")) is None
        assert library.favorites() == []

    def test_newest_first(self, library):
        library.toggle_favorite(make_artifact("Order"))
        library.toggle_favorite(make_artifact("Invoice"))
        assert [f.artifact.title for f in library.favorites()] == ["Invoice", "Order"]

    def test_remove_by_id(self, library):
        saved = library.toggle_favorite(make_artifact("Order"))
        library.toggle_favorite(make_artifact("Invoice"))
        assert library.remove_favorite(saved.id) is True
        assert [f.artifact.title for f in library.favorites()] == ["Invoice"]
        assert library.remove_favorite("missing") is False
