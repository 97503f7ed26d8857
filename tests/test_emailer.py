import smtplib

from utils import emailer


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.sent = []
        self.started_tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        pass

    def send_message(self, msg):
        self.sent.append(msg)


def _configure(app, **overrides):
    settings = dict(
        SMTP_HOST="smtp.example.com",
        SMTP_PORT=2525,
        SMTP_FROM_EMAIL="security@example.com",
        SMTP_TIMEOUT_SECONDS=3,
        EMAIL_SUBJECT_PREFIX="[Admin Panel]",
    )
    settings.update(overrides)
    app.config.update(**settings)


def test_unconfigured_smtp_reports_instead_of_raising(app):
    assert emailer.send_email("admin@example.com", "Hello", "body") == (False, "Email not configured")


def test_reset_email_uses_prefix_and_timeout(app, monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(emailer.smtplib, "SMTP", FakeSMTP)
    _configure(app, ADMIN_PANEL_URL="https://admin.example.com/")

    assert emailer.send_password_reset_email("admin@example.com", "tok123", 60) == (True, None)

    server = FakeSMTP.instances[0]
    assert (server.host, server.port, server.timeout) == ("smtp.example.com", 2525, 3)
    assert server.started_tls
    msg = server.sent[0]
    assert msg["Subject"] == "[Admin Panel] Admin password reset"
    assert msg["To"] == "admin@example.com"
    assert "https://admin.example.com/reset-password?token=tok123" in msg.get_content()


def test_smtp_failure_is_reported(app, monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(emailer.smtplib, "SMTP", refuse)
    _configure(app, EMAIL_SUBJECT_PREFIX="")

    ok, err = emailer.send_email("admin@example.com", "Hello", "body")
    assert ok is False
    assert err
