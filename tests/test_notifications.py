import threading

from lastmile.config import settings
from lastmile.models.notifications import NotificationChannel
from lastmile.services import notification_service
from lastmile.services.notification_service import NotificationDispatcher


class RecordingEmailService:
    def __init__(self):
        self.calls = []

    def send_notification_email(self, to_email, subject, message):
        self.calls.append((to_email, subject, message, threading.current_thread()))
        return True


async def test_email_is_sent_off_the_event_loop(monkeypatch):
    email = RecordingEmailService()
    monkeypatch.setattr(notification_service, "get_email_service", lambda: email)

    sent = await NotificationDispatcher().dispatch(
        NotificationChannel.EMAIL.value, "mona@example.com", "Shipment update\n\nOut for delivery"
    )

    assert sent is True
    [(to_email, subject, _, thread)] = email.calls
    assert to_email == "mona@example.com"
    assert subject == "Shipment update"
    assert thread is not threading.main_thread()


async def test_unconfigured_sms_is_not_sent(monkeypatch):
    monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", "")
    sent = await NotificationDispatcher().dispatch(NotificationChannel.SMS.value, "01099999999", "hi")

    assert sent is False
