from __future__ import annotations

from app.services.notification_service import NotificationPreferences


class PreferenceStore:
    """Per-viewer notification preference snapshots, read at dispatch time."""

    def __init__(self) -> None:
        self._by_viewer: dict[str, NotificationPreferences] = {}

    def get(self, viewer_id: str) -> NotificationPreferences:
        return self._by_viewer.get(viewer_id) or NotificationPreferences()

    def set(self, viewer_id: str, preferences: NotificationPreferences) -> None:
        self._by_viewer[viewer_id] = preferences

    def remove(self, viewer_id: str) -> None:
        self._by_viewer.pop(viewer_id, None)


preference_store = PreferenceStore()
