from __future__ import annotations

import unittest

from escrow_test_support import make_app


class ApiErrorContractTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = make_app()
        cls.client = cls.app.test_client()

    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.client.get("/api/does-not-exist")
        self.assertEqual(res.status_code, 404)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), 404)
        self.assertTrue(str(body.get("trace_id") or "").strip())

    def test_wrong_method_is_json_405(self):
        res = self.client.get("/api/orders/1/confirm-receipt")
        self.assertEqual(res.status_code, 405)
        self.assertEqual(int((res.get_json(force=True) or {}).get("status") or 0), 405)


if __name__ == "__main__":
    unittest.main()
