import unittest

from threat_lookup.errors import ErrorKind, GatewayError, StoreUnavailable, UpstreamClientError
from threat_lookup.models import Indicator, LookupResult, verdict_zone


class TestModels(unittest.TestCase):
    def test_verdict_zone(self):
        self.assertEqual(verdict_zone({"Zone": "Orange"}), "Orange")
        self.assertEqual(verdict_zone({"Zone": "Purple"}), "Grey")
        self.assertEqual(verdict_zone({}), "Grey")

    def test_lookup_result_zone(self):
        result = LookupResult(indicator=Indicator("ip", "8.8.8.8"), verdict={"Zone": "Green"}, outcome="cached")
        self.assertEqual(result.zone, "Green")
        self.assertEqual(result.to_dict()["indicator"], {"type": "ip", "value": "8.8.8.8", "input": ""})


class TestErrors(unittest.TestCase):
    def test_str_includes_details(self):
        err = StoreUnavailable("store get failed", {"type": "ip"})
        self.assertEqual(str(err), "store get failed (details: {'type': 'ip'})")
        self.assertEqual(err.status_code, 500)

    def test_kind_override(self):
        err = GatewayError("nope", kind=ErrorKind.NOT_FOUND)
        self.assertEqual(err.status_code, 404)
        self.assertEqual(err.public_message, "Not Found: Lookup results not found.")

    def test_upstream_client_error_mapping(self):
        self.assertTrue(UpstreamClientError.handles(401))
        self.assertFalse(UpstreamClientError.handles(500))
        self.assertEqual(UpstreamClientError(403).kind, ErrorKind.QUOTA_EXCEEDED)


if __name__ == "__main__":
    unittest.main()
