from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from app.config import DEFAULT_CONFIG, apply_env_overrides, deep_merge, load_config


class ConfigTest(unittest.TestCase):
    def test_missing_file_returns_defaults_copy(self) -> None:
        config = load_config("/nonexistent/config.yaml")
        self.assertEqual(config, DEFAULT_CONFIG)
        config["shop"]["name"] = "changed"
        self.assertEqual(DEFAULT_CONFIG["shop"]["name"], "Premium Shop")

    def test_yaml_is_merged_over_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text(
                "shop:\n  name: Toko Premium\nrate_limit:\n  max_messages_per_minute: 5\n"
                "promo:\n  codes:\n    HEMAT10:\n      discount_percent: 10\n      expires_at: 2026-12-31\n",
                encoding="utf-8",
            )
            config = load_config(str(path))

        self.assertEqual(config["shop"]["name"], "Toko Premium")
        self.assertEqual(config["rate_limit"]["max_messages_per_minute"], 5)
        self.assertEqual(config["rate_limit"]["max_orders_per_day"], 5)
        self.assertIn("HEMAT10", config["promo"]["codes"])

    def test_json_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text(json.dumps({"payment": {"gateway": "xendit"}}), encoding="utf-8")
            config = load_config(str(path))
        self.assertEqual(config["payment"]["gateway"], "xendit")
        self.assertEqual(config["payment"]["xendit"]["api_base_url"], "https://api.xendit.co")

    def test_env_overrides(self) -> None:
        config = apply_env_overrides(
            DEFAULT_CONFIG,
            {
                "SHOPBOT_ADMIN_IDS": "628111, 628222,",
                "XENDIT_SECRET_KEY": " xnd_test ",
                "SHOPBOT_STORE_BACKEND": "",
            },
        )
        self.assertEqual(config["admin"]["admin_ids"], ["628111", "628222"])
        self.assertEqual(config["payment"]["xendit"]["secret_key"], "xnd_test")
        self.assertEqual(config["store"]["backend"], "memory")
        self.assertEqual(DEFAULT_CONFIG["admin"]["admin_ids"], [])

    def test_deep_merge_replaces_non_dict_values(self) -> None:
        merged = deep_merge({"a": {"b": 1, "c": [1]}}, {"a": {"c": [2]}})
        self.assertEqual(merged, {"a": {"b": 1, "c": [2]}})


if __name__ == "__main__":
    unittest.main()
