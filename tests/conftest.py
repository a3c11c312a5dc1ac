from datetime import datetime, timedelta, timezone

import pytest

from push_sync_agent.alerts import AlertPresenter
from push_sync_agent.models import Message

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingPresenter(AlertPresenter):
    """Presenter that remembers every alert instead of showing it."""

    def __init__(self):
        self.presented = []

    def present(self, title, body, message_id):
        self.presented.append((title, body, message_id))

    @property
    def ids(self):
        return [message_id for _, _, message_id in self.presented]


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def make_message(message_id, status="Sent", updated_at=T0, delivered_at=None, **kwargs):
    return Message(
        id=message_id,
        title=kwargs.pop("title", f"Title {message_id}"),
        body=kwargs.pop("body", f"Body {message_id}"),
        status=status,
        updated_at=updated_at,
        delivered_at=delivered_at,
        **kwargs,
    )


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def clock():
    return FakeClock()
