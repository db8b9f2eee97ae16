import json
import tempfile
import unittest
from pathlib import Path

from aeye.core.errors import ValidationError
from aeye.scanner import Scanner, SystemProfile, list_files


class TestScanner(unittest.TestCase):
    def test_node_project(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "package.json").write_text(json.dumps({"scripts": {"test": "jest", "build": "tsc"}}), encoding="utf-8")
            (root / "yarn.lock").write_text("", encoding="utf-8")
            (root / "src").mkdir()
            (root / "src" / "index.ts").write_text("", encoding="utf-8")
            (root / "node_modules" / "dep").mkdir(parents=True)
            (root / "node_modules" / "dep" / "index.rb").write_text("", encoding="utf-8")

            profile = Scanner.scan(root)

        self.assertEqual(profile.languages, ["TypeScript"])
        self.assertEqual(profile.package_manager, "yarn")
        self.assertEqual(profile.verify_commands, ["yarn run build", "yarn test"])

    def test_rust_project(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "Cargo.toml").write_text("[package]\n", encoding="utf-8")
            (root / "main.rs").write_text("", encoding="utf-8")
            profile = Scanner.scan(root)
        self.assertEqual(profile, SystemProfile(languages=["Rust"], package_manager="cargo", verify_commands=["cargo build", "cargo test"]))

    def test_empty_repository(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            profile = Scanner.scan(Path(td))
        self.assertEqual(profile.to_dict(), {"languages": [], "package_manager": None, "verify_commands": []})

    def test_profile_from_dict_validates(self) -> None:
        self.assertEqual(SystemProfile.from_dict({"languages": ["Go"]}).languages, ["Go"])
        with self.assertRaises(ValidationError):
            SystemProfile.from_dict({"verify_commands": "make test"})
        with self.assertRaises(ValidationError):
            SystemProfile.from_json("{not json")

    def test_list_files_skips_vcs_and_runs(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / ".git").mkdir()
            (root / ".git" / "HEAD").write_text("", encoding="utf-8")
            (root / ".nlpg").mkdir()
            (root / ".nlpg" / "system.json").write_text("{}", encoding="utf-8")
            (root / "b").mkdir()
            (root / "b" / "c.py").write_text("", encoding="utf-8")
            (root / "a.txt").write_text("", encoding="utf-8")
            self.assertEqual(list_files(root), ["a.txt", "b/c.py"])
            self.assertEqual(list_files(root, limit=1), ["a.txt"])


if __name__ == "__main__":
    unittest.main()
