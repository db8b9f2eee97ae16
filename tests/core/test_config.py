import tempfile
import unittest
from pathlib import Path

from aeye.core.config import AEyeConfig, find_repo_root, load_config
from aeye.core.errors import ValidationError


class TestConfig(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(Path(td))
        self.assertEqual(cfg, AEyeConfig())
        self.assertEqual(cfg.default_tier, 1)
        self.assertTrue(cfg.require_branch_for_apply)
        self.assertEqual(cfg.model.info_ttl_s, 3600.0)
        self.assertEqual(load_config(None), AEyeConfig())

    def test_loads_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a-eye.yaml").write_text(
                "\n".join(
                    [
                        "default_tier: 2",
                        "deny_globs: ['*.env', '*/.git/*']",
                        "write_allowlist: ['*/src/*']",
                        "shell_deny_patterns: ['rm\\s+-rf']",
                        "require_branch_for_apply: false",
                        "model:",
                        "  provider: anthropic.messages",
                        "  name: claude-sonnet-4-5",
                    ]
                )
                + "\n",
                encoding="utf-8",
            )
            cfg = load_config(root)
        self.assertEqual(cfg.default_tier, 2)
        self.assertEqual(cfg.deny_globs, ("*.env", "*/.git/*"))
        self.assertEqual(cfg.write_allowlist, ("*/src/*",))
        self.assertEqual(cfg.shell_deny_patterns, (r"rm\s+-rf",))
        self.assertFalse(cfg.require_branch_for_apply)
        self.assertEqual(cfg.model.provider, "anthropic.messages")
        self.assertEqual(cfg.model.name, "claude-sonnet-4-5")

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a-eye.yaml").write_text("", encoding="utf-8")
            self.assertEqual(load_config(root), AEyeConfig())

    def test_invalid_config_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a-eye.yaml").write_text("default_tier: -1\nunknown_key: 1\n", encoding="utf-8")
            with self.assertRaises(ValidationError) as ctx:
                load_config(root)
        self.assertEqual(ctx.exception.code, "config.invalid")
        self.assertGreaterEqual(len(ctx.exception.data["errors"]), 2)

    def test_model_overrides(self) -> None:
        cfg = AEyeConfig().with_model_overrides(provider="aeye.llm.testing:ScriptedProvider", name="m1")
        self.assertEqual(cfg.model.provider, "aeye.llm.testing:ScriptedProvider")
        self.assertEqual(cfg.model.name, "m1")
        self.assertEqual(AEyeConfig().with_model_overrides(), AEyeConfig())

    def test_find_repo_root_walks_up(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td).resolve()
            (root / ".git").mkdir()
            nested = root / "a" / "b"
            nested.mkdir(parents=True)
            self.assertEqual(find_repo_root(nested), root)


if __name__ == "__main__":
    unittest.main()
