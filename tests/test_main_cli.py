from __future__ import annotations

import io
import tempfile
import unittest
from copy import deepcopy
from pathlib import Path
from unittest import mock

from app.config import DEFAULT_CONFIG
from app.main import DEFAULT_CONFIG_PATH, build_parser, cmd_chat, cmd_stock


class MainCliTest(unittest.TestCase):
    def test_commands_default_config_path(self) -> None:
        parser = build_parser()
        for argv in (["serve"], ["chat"], ["sweep-sessions"], ["stock"]):
            args = parser.parse_args(argv)
            self.assertEqual(args.config, DEFAULT_CONFIG_PATH)

    def test_stock_command_arguments(self) -> None:
        args = build_parser().parse_args(["stock", "--product", "netflix", "--quantity", "5"])
        self.assertEqual((args.product, args.quantity), ("netflix", 5))

    def test_chat_session_from_stdin(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = deepcopy(DEFAULT_CONFIG)
            config["delivery"]["credentials_dir"] = tmp
            config["catalog"]["products"][0]["stock"] = 1
            args = build_parser().parse_args(["chat", "--customer-id", "628111"])
            stdin = io.StringIO("1\nnetflix\ncart\ncheckout\n1\nquit\nmenu\n")
            stdout = io.StringIO()

            code = cmd_chat(args, config, stdin=stdin, stdout=stdout)

        self.assertEqual(code, 0)
        output = stdout.getvalue()
        self.assertIn("Available products:", output)
        self.assertIn("Choose a payment method", output)
        self.assertIn("Method: QRIS", output)
        self.assertIn("[image] https://example.invalid/qr/", output)

    def test_stock_requires_product_and_quantity_together(self) -> None:
        args = build_parser().parse_args(["stock", "--product", "netflix"])
        with mock.patch("builtins.print") as printed:
            self.assertEqual(cmd_stock(args, deepcopy(DEFAULT_CONFIG)), 1)
        printed.assert_called_once_with("--product and --quantity must be given together")

    def test_stock_listing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "netflix.txt").write_text("a|b\n", encoding="utf-8")
            config = deepcopy(DEFAULT_CONFIG)
            config["delivery"]["credentials_dir"] = tmp
            args = build_parser().parse_args(["stock"])
            with mock.patch("builtins.print") as printed:
                self.assertEqual(cmd_stock(args, config), 0)
        lines = [call.args[0] for call in printed.call_args_list]
        self.assertIn("netflix\tstock=0\tcredentials=1", lines)


if __name__ == "__main__":
    unittest.main()
