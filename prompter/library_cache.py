# prompter/library_cache.py

import threading
import time
import uuid
from typing import List, Optional

from prompter.entities import Artifact, SavedArtifact


class LibraryCache:
    """
    Process-local library of past queries and saved artifacts.

    - search history: most recent first, de-duplicated, capped at history_limit
    - favorites: toggled by artifact title, newest first
    - thread-safe operations (single worker, but concurrent requests)
    """

    def __init__(self, history_limit: int = 10) -> None:
        self.history_limit = history_limit
        self._lock = threading.Lock()
        self._history: List[str] = []
        self._favorites: List[SavedArtifact] = []

    # -----------------------
    # Search history
    # -----------------------

    def record_search(self, query: str) -> None:
        query = (query or "").strip()
        if not query:
            return
        with self._lock:
            entries = [q for q in self._history if q != query]
            self._history = [query, *entries][: self.history_limit]

    def history(self) -> List[str]:
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history = []

    # -----------------------
    # Favorites
    # -----------------------

    def is_favorite(self, title: str) -> bool:
        with self._lock:
            return any(f.artifact.title == title for f in self._favorites)

    def toggle_favorite(self, artifact: Artifact) -> Optional[SavedArtifact]:
        """
        Saves the artifact, or removes the saved entry with the same title.
        Returns the new entry, or None when the toggle removed one.
        """
        with self._lock:
            existing = [f for f in self._favorites if f.artifact.title == artifact.title]
            if existing:
                self._favorites = [f for f in self._favorites if f.artifact.title != artifact.title]
                return None
            saved = SavedArtifact(
                id=uuid.uuid4().hex[:9],
                saved_at=int(time.time() * 1000),
                artifact=artifact,
            )
            self._favorites.insert(0, saved)
            return saved

    def remove_favorite(self, favorite_id: str) -> bool:
        with self._lock:
            before = len(self._favorites)
            self._favorites = [f for f in self._favorites if f.id != favorite_id]
            return len(self._favorites) != before

    def favorites(self) -> List[SavedArtifact]:
        with self._lock:
            return list(self._favorites)
