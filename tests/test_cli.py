"""
Tests for the CLI module.
"""

import json
import os
import tempfile
import unittest
from io import StringIO
from unittest.mock import MagicMock, patch

from threat_lookup.cli import exit_code_from_zones, main, print_human_readable
from threat_lookup.config import Settings
from threat_lookup.errors import UpstreamClientError
from threat_lookup.models import Indicator, LookupResult

RED_RESULT = LookupResult(
    indicator=Indicator("url", "evil.example.com/login", "https://evil.example.com/login"),
    verdict={"Zone": "Red", "Categories": ["Phishing"]},
    outcome="fresh",
)
GREEN_RESULT = LookupResult(
    indicator=Indicator("domain", "ya.ru", "ya.ru"),
    verdict={"Zone": "Green"},
    outcome="cached",
)


class CliTestCase(unittest.TestCase):
    def setUp(self):
        for target, kwargs in [
            ("threat_lookup.cli.load_env_files", {}),
            ("threat_lookup.cli.configure_logging", {}),
            ("threat_lookup.cli.Settings.from_env", {"return_value": Settings()}),
        ]:
            p = patch(target, **kwargs)
            p.start()
            self.addCleanup(p.stop)

        self.service = MagicMock()
        p = patch("threat_lookup.cli.build_service", return_value=self.service)
        self.build_service = p.start()
        self.addCleanup(p.stop)

    def run_cli(self, *argv):
        with patch("sys.stdout", new=StringIO()) as out, patch("sys.stderr", new=StringIO()) as err:
            with self.assertRaises(SystemExit) as ctx:
                main(list(argv))
        return ctx.exception.code, out.getvalue(), err.getvalue()


class TestLookupCommand(CliTestCase):
    def test_json_output(self):
        self.service.lookup.return_value = RED_RESULT

        code, out, _ = self.run_cli("https://evil.example.com/login", "--json")

        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertEqual(payload["zone"], "Red")
        self.assertEqual(payload["outcome"], "fresh")
        self.assertEqual(payload["indicator"]["value"], "evil.example.com/login")
        self.service.store.close.assert_called_once()

    def test_user_id_is_passed(self):
        self.service.lookup.return_value = GREEN_RESULT
        self.run_cli("ya.ru", "--user-id", "42", "-j")
        self.service.lookup.assert_called_once_with("ya.ru", 42)

    def test_human_readable_output(self):
        self.service.lookup.return_value = RED_RESULT
        code, out, _ = self.run_cli("https://evil.example.com/login")
        self.assertEqual(code, 0)
        self.assertIn("🔴 Zone: Red", out)
        self.assertIn("Phishing", out)

    def test_fail_on(self):
        self.service.lookup.return_value = RED_RESULT
        code, _, _ = self.run_cli("https://evil.example.com/login", "--fail-on", "Orange")
        self.assertEqual(code, 1)

        self.service.lookup.return_value = GREEN_RESULT
        code, _, _ = self.run_cli("ya.ru", "--fail-on", "Orange")
        self.assertEqual(code, 0)

    def test_gateway_error_exit_code(self):
        self.service.lookup.side_effect = UpstreamClientError(403, "ya.ru")

        code, out, _ = self.run_cli("ya.ru", "--json")

        self.assertEqual(code, 2)
        payload = json.loads(out)
        self.assertEqual(payload["kind"], "quota_exceeded")
        self.assertEqual(payload["error"], "Forbidden: Quota or request limit exceeded.")
        self.service.store.close.assert_called_once()

    def test_text_file(self):
        self.service.lookup_text.return_value = {"https://evil.example.com/login": RED_RESULT}
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "ocr.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write("go to https://evil.example.com/login")

            code, out, _ = self.run_cli("--text", path, "--json", "--fail-on", "Red")

        self.assertEqual(code, 1)
        self.service.lookup_text.assert_called_once_with("go to https://evil.example.com/login", None)
        self.assertEqual(json.loads(out)["https://evil.example.com/login"]["zone"], "Red")

    def test_requires_an_argument(self):
        code, _, err = self.run_cli()
        self.assertEqual(code, 2)
        self.assertIn("required", err)


class TestOtherCommands(CliTestCase):
    def test_classify_only(self):
        code, out, _ = self.run_cli("8.8.8.8:443", "--classify-only")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "ip\t8.8.8.8")
        self.build_service.assert_not_called()

    def test_classify_only_json(self):
        _, out, _ = self.run_cli("https://Evil.Example.com:8080/a", "--classify-only", "--json")
        self.assertEqual(
            json.loads(out),
            {"type": "url", "value": "evil.example.com/a", "input": "https://Evil.Example.com:8080/a"},
        )

    def test_classify_only_invalid(self):
        code, _, err = self.run_cli("not an indicator", "--classify-only")
        self.assertEqual(code, 2)
        self.assertIn("Invalid input", err)

    def test_classify_only_requires_indicator(self):
        code, _, err = self.run_cli("--text", "ocr.txt", "--classify-only")
        self.assertEqual(code, 2)
        self.assertIn("--classify-only requires INDICATOR", err)
        self.build_service.assert_not_called()

    def test_init_db(self):
        store = MagicMock()
        with patch("threat_lookup.cli.build_store", return_value=store):
            code, out, _ = self.run_cli("--init-db")
        self.assertEqual(code, 0)
        store.init_schema.assert_called_once()
        store.close.assert_called_once()
        self.assertIn("Schema ready", out)


class TestHelpers(unittest.TestCase):
    def test_exit_code_from_zones(self):
        self.assertEqual(exit_code_from_zones(["Red"], fail_on=None), 0)
        self.assertEqual(exit_code_from_zones(["Green", "Yellow"], fail_on="Yellow"), 1)
        self.assertEqual(exit_code_from_zones(["Green", "Grey"], fail_on="Yellow"), 0)
        self.assertEqual(exit_code_from_zones(["Grey"], fail_on="Grey"), 1)
        self.assertEqual(exit_code_from_zones([], fail_on="Green"), 0)

    def test_print_human_readable_without_categories(self):
        with patch("sys.stdout", new=StringIO()) as mock_stdout:
            print_human_readable(GREEN_RESULT.to_dict())
            output = mock_stdout.getvalue()

        self.assertIn("ya.ru (domain)", output)
        self.assertIn("✅ Zone: Green", output)
        self.assertIn("Answered from: cached", output)
        self.assertNotIn("Categories", output)


if __name__ == "__main__":
    unittest.main()
