import unittest
from datetime import datetime, timezone
from unittest import mock

import requests

from zhinao_geo.services.inquiry_mail import (
    MailDispatchError,
    inquiry_subject,
    render_inquiry_email,
    send_inquiry_notification,
)
from testing_utils import make_settings


def _response(status_code, payload=None):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    return resp


class TestRender(unittest.TestCase):
    def test_escapes_values(self):
        html = render_inquiry_email(name="<b>Li</b>", company="A & B", phone="123")
        self.assertIn("&lt;b&gt;Li&lt;/b&gt;", html)
        self.assertIn("A &amp; B", html)
        self.assertNotIn("<b>Li</b>", html)

    def test_optional_rows_omitted(self):
        html = render_inquiry_email(name="Li", company="Acme", phone="123")
        self.assertNotIn("企业官网", html)
        self.assertNotIn("咨询内容", html)

        html = render_inquiry_email(name="Li", company="Acme", phone="123", website="https://acme.cn", message="hi")
        self.assertIn("企业官网", html)
        self.assertIn('href="https://acme.cn"', html)
        self.assertIn("咨询内容", html)

    def test_submission_time_in_display_zone(self):
        now = datetime(2026, 1, 31, 20, 30, tzinfo=timezone.utc)
        html = render_inquiry_email(name="Li", company="Acme", phone="123", now=now, tz_name="Asia/Shanghai")
        self.assertIn("2026/02/01 04:30:00", html)

    def test_subject(self):
        self.assertEqual(inquiry_subject("Acme", "Li"), "[新咨询] Acme - Li")


class TestSend(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings()

    def test_posts_to_resend(self):
        with mock.patch("zhinao_geo.services.inquiry_mail.requests.post", return_value=_response(200, {"id": "em_1"})) as post:
            data = send_inquiry_notification(self.settings, name="Li", company="Acme", phone="123")
        self.assertEqual(data, {"id": "em_1"})
        args, kwargs = post.call_args
        self.assertEqual(args[0], self.settings.resend_endpoint)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer re_test")
        self.assertEqual(kwargs["json"]["to"], ["sales@example.com"])
        self.assertEqual(kwargs["json"]["subject"], "[新咨询] Acme - Li")

    def test_provider_error(self):
        with mock.patch("zhinao_geo.services.inquiry_mail.requests.post", return_value=_response(422)):
            with self.assertRaises(MailDispatchError):
                send_inquiry_notification(self.settings, name="Li", company="Acme", phone="123")

    def test_network_error(self):
        with mock.patch(
            "zhinao_geo.services.inquiry_mail.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            with self.assertRaises(MailDispatchError):
                send_inquiry_notification(self.settings, name="Li", company="Acme", phone="123")

    def test_missing_key(self):
        settings = make_settings(resend_api_key=None)
        with mock.patch("zhinao_geo.services.inquiry_mail.requests.post") as post:
            with self.assertRaises(MailDispatchError):
                send_inquiry_notification(settings, name="Li", company="Acme", phone="123")
        post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
