"""Unit tests for configuration loading."""

import json
import os
import tempfile
import unittest

from article_sender.config import DEFAULTS, build_settings, load_config


class TestLoadConfig(unittest.TestCase):
    def test_missing_file_returns_empty(self):
        self.assertEqual(load_config("/no/such/config.json"), {})

    def test_reads_json_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "config.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"max_articles": 5}, f)
            self.assertEqual(load_config(path), {"max_articles": 5})

    def test_packaged_config_is_valid(self):
        settings = build_settings(load_config(), base_dir="/tmp", environ={})
        self.assertEqual(len(settings["listings"]), 3)


class TestBuildSettings(unittest.TestCase):
    def test_defaults_and_relative_paths(self):
        settings = build_settings({}, base_dir="/srv/sender", environ={})
        self.assertEqual(settings["state_path"], "/srv/sender/sent-articles.json")
        self.assertEqual(settings["output_dir"], "/srv/sender/articles")
        self.assertEqual(settings["max_articles"], DEFAULTS["max_articles"])
        self.assertEqual(settings["listings"][0]["type"], "html")
        self.assertIsNone(settings["smtp_user"])

    def test_environment_overrides(self):
        settings = build_settings(
            {"kindle_address": "file@kindle.com", "site_origin": "https://example.com/"},
            base_dir="/tmp",
            environ={
                "KINDLE_EMAIL": "env@kindle.com",
                "NOTIFICATION_EMAIL": "me@example.com",
                "EMAIL_USER": "user",
                "EMAIL_PASS": "secret",
            },
        )
        self.assertEqual(settings["kindle_address"], "env@kindle.com")
        self.assertEqual(settings["notification_address"], "me@example.com")
        self.assertEqual(settings["smtp_user"], "user")
        self.assertEqual(settings["smtp_password"], "secret")
        self.assertEqual(settings["site_origin"], "https://example.com")

    def test_absolute_paths_are_kept(self):
        settings = build_settings(
            {"state_path": "/var/state.json"}, base_dir="/tmp", environ={}
        )
        self.assertEqual(settings["state_path"], "/var/state.json")

    def test_invalid_values_raise(self):
        for raw in (
            {"output_format": "pdf"},
            {"image_mode": "inline"},
            {"mail_client": "outlook"},
        ):
            with self.assertRaises(ValueError):
                build_settings(raw, base_dir="/tmp", environ={})


if __name__ == "__main__":
    unittest.main()
