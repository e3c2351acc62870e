from unittest import mock

from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse


class HealthCheckTests(TestCase):
    @override_settings(PAC_USER="demo", PAC_API_KEY="key")
    def test_healthy_when_database_and_pac_configured(self):
        response = self.client.get(reverse("healthz"))
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["services"]["database"]["status"], "up")

    @override_settings(PAC_USER="", PAC_API_KEY="")
    def test_degraded_without_fallback_credentials(self):
        response = self.client.get(reverse("healthz"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "degraded")

    @override_settings(PAC_USER="demo", PAC_API_KEY="key")
    def test_unhealthy_when_database_is_down(self):
        with mock.patch("core.views_health.connection") as conn:
            conn.cursor.side_effect = DatabaseError("connection refused")
            response = self.client.get(reverse("healthz"))
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "unhealthy")

    def test_post_not_allowed(self):
        response = self.client.post(reverse("healthz"))
        self.assertEqual(response.status_code, 405)
