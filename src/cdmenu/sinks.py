"""Receivers for what the poller produces: tray state, tooltip, menu, notifications."""

from __future__ import annotations

import logging
from collections import deque
from typing import Protocol

from .models.display import MenuModel, TrayState
from .models.status import NotificationEvent, OverallStatus

logger = logging.getLogger(__name__)


class StatusSink(Protocol):
    def set_tray_state(self, state: TrayState) -> None: ...

    def set_tooltip(self, text: str) -> None: ...

    def set_menu(self, menu: MenuModel, urls: dict[str, str]) -> None: ...

    def notify(self, event: NotificationEvent) -> None: ...

    def publish(self, status: OverallStatus) -> None: ...


class LoggingSink:
    """Writes every update to the log. Useful headless."""

    def set_tray_state(self, state: TrayState) -> None:
        logger.debug("Tray state: %s", state.value)

    def set_tooltip(self, text: str) -> None:
        logger.debug("Tooltip: %s", text.replace("\n", " | "))

    def set_menu(self, menu: MenuModel, urls: dict[str, str]) -> None:
        logger.debug("Menu rebuilt with %d section(s)", len(menu.sections))

    def notify(self, event: NotificationEvent) -> None:
        logger.info("%s: %s", event.title, event.body.replace("\n", " "))

    def publish(self, status: OverallStatus) -> None:
        logger.info(
            "Status: %s, %d/%d failed, %d in progress",
            "healthy" if status.is_healthy else "FAILED",
            len(status.failed_pipelines),
            status.total_monitored,
            status.in_progress_count,
        )


class MemorySink(LoggingSink):
    """Keeps the latest display state and recent notifications in memory.

    Owns the menu's item-id → URL mapping, so a click on a menu entry is
    resolved through :meth:`open_menu_item` rather than any global registry.
    """

    def __init__(self, max_notifications: int = 50) -> None:
        self.tray_state = TrayState.UNCONFIGURED
        self.tooltip = ""
        self.menu: MenuModel | None = None
        self.menu_urls: dict[str, str] = {}
        self.status: OverallStatus | None = None
        self.notifications: deque[NotificationEvent] = deque(maxlen=max_notifications)
        self.menu_updates = 0
        self.publish_count = 0

    def set_tray_state(self, state: TrayState) -> None:
        super().set_tray_state(state)
        self.tray_state = state

    def set_tooltip(self, text: str) -> None:
        super().set_tooltip(text)
        self.tooltip = text

    def set_menu(self, menu: MenuModel, urls: dict[str, str]) -> None:
        super().set_menu(menu, urls)
        self.menu = menu
        self.menu_urls = dict(urls)
        self.menu_updates += 1

    def notify(self, event: NotificationEvent) -> None:
        super().notify(event)
        self.notifications.append(event)

    def publish(self, status: OverallStatus) -> None:
        super().publish(status)
        self.status = status
        self.publish_count += 1

    def open_menu_item(self, item_id: str) -> str | None:
        return self.menu_urls.get(item_id)

    def recent_notifications(self, limit: int = 20) -> list[NotificationEvent]:
        return list(self.notifications)[-limit:] if limit > 0 else []
