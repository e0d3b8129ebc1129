"""Notification adapters for alert delivery."""

from herbsync.adapters.notifications.http_notifier import HttpNotifier

__all__ = ["HttpNotifier"]
