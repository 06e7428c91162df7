# apps/utils/tests.py
import json
import logging
from unittest import mock

from django.db import DatabaseError
from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.exceptions import NotAuthenticated

from .exceptions import (
    AlreadyExists, Conflict, Forbidden, InsufficientStock, InvalidArgument, InvalidTransition,
    NotFound, Unauthenticated, custom_exception_handler,
)
from .logging import JSONFormatter
from .middleware import GlobalExceptionMiddleware


class ExceptionHandlerTests(SimpleTestCase):
    def _render(self, exc):
        return custom_exception_handler(exc, {})

    def test_business_errors_map_to_statuses(self):
        cases = [
            (Unauthenticated(), 401, "unauthenticated"),
            (Forbidden(), 403, "forbidden"),
            (NotFound("Order not found."), 404, "not_found"),
            (InvalidArgument("bad"), 400, "invalid_argument"),
            (InvalidTransition("nope"), 400, "invalid_transition"),
            (InsufficientStock("Widget", available=1, requested=3), 400, "insufficient_stock"),
            (AlreadyExists("dup"), 409, "already_exists"),
        ]
        for exc, http_status, code in cases:
            with self.subTest(code=code):
                resp = self._render(exc)
                self.assertEqual(resp.status_code, http_status)
                self.assertEqual(resp.data["code"], code)
                self.assertNotIn("retry", resp.data)

    def test_conflict_is_marked_retryable(self):
        resp = self._render(Conflict("Stock changed. Please retry."))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data, {"error": "Stock changed. Please retry.", "code": "conflict", "retry": True})

    def test_insufficient_stock_message(self):
        exc = InsufficientStock("Widget", available=1, requested=3)
        self.assertEqual(exc.message, "Not enough stock for Widget. Required: 3, Available: 1")

    def test_drf_errors_pass_through(self):
        resp = self._render(NotAuthenticated())
        self.assertEqual(resp.status_code, 401)

    def test_unhandled_errors_become_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            resp = self._render(RuntimeError("boom"))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data["code"], "server_error")
        self.assertNotIn("boom", resp.data["error"])


class JSONFormatterTests(SimpleTestCase):
    def _record(self, msg, args=None, **extra):
        record = logging.LogRecord("apps.orders", logging.INFO, __file__, 1, msg, args, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_fields_lifted(self):
        out = json.loads(JSONFormatter().format(self._record("placed", order_id="abc", user_id=7)))
        self.assertEqual(out["msg"], "placed")
        self.assertEqual(out["order_id"], "abc")
        self.assertEqual(out["user_id"], "7")
        self.assertNotIn("product_id", out)

    def test_sensitive_keys_redacted(self):
        record = self._record({"signature": "deadbeef", "nested": {"password": "x", "city": "Springfield"}})
        out = json.loads(JSONFormatter().format(record))
        self.assertNotIn("deadbeef", out["msg"])
        self.assertNotIn("'x'", out["msg"])
        self.assertIn("Springfield", out["msg"])


class HealthCheckTests(TestCase):
    def test_healthy(self):
        resp = self.client.get(reverse("health-check"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["components"]["db"], "ok")

    def test_database_down(self):
        with mock.patch("apps.utils.health.connection") as conn:
            conn.cursor.side_effect = DatabaseError("gone")
            with self.assertLogs("apps.utils.health", level="ERROR"):
                resp = self.client.get(reverse("health-check"))
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["status"], "error")


class GlobalExceptionMiddlewareTests(SimpleTestCase):
    def setUp(self):
        self.middleware = GlobalExceptionMiddleware(lambda request: HttpResponse())
        self.factory = RequestFactory()

    def test_api_paths_get_json_500(self):
        request = self.factory.get("/api/v1/orders/")
        with self.assertLogs("apps.utils.middleware", level="ERROR"):
            resp = self.middleware.process_exception(request, RuntimeError("boom"))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(json.loads(resp.content)["code"], "server_error")

    def test_other_paths_fall_through(self):
        request = self.factory.get("/admin/")
        with self.assertLogs("apps.utils.middleware", level="ERROR"):
            self.assertIsNone(self.middleware.process_exception(request, RuntimeError("boom")))
