import os
import tempfile
import textwrap
import unittest
from pathlib import Path
from unittest.mock import patch

from app_config import (
    AppConfigurationError,
    load_app_config,
    resolve_config_path,
    resolve_tab_url,
)


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class AppConfigLoadingTests(unittest.TestCase):
    def test_load_app_config_reads_all_sections(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = root / "config.toml"
            _write_text(
                config_path,
                textwrap.dedent(
                    """
                    [store]
                    host = "0.0.0.0"
                    port = 9100
                    data_file = "data/store.json"

                    [sync]
                    reconcile_interval_seconds = 0.5
                    write_timeout_seconds = 1

                    [tab]
                    url = " https://example.com/ "
                    """
                ).strip(),
            )

            app_config = load_app_config(str(config_path))

            self.assertEqual(str(config_path), app_config.source_file)
            self.assertEqual("0.0.0.0", app_config.store.host)
            self.assertEqual(9100, app_config.store.port)
            self.assertEqual(
                str((root / "data/store.json").resolve()),
                app_config.store.data_file,
            )
            self.assertEqual(0.5, app_config.sync.reconcile_interval_seconds)
            self.assertEqual(1.0, app_config.sync.write_timeout_seconds)
            self.assertEqual(2.0, app_config.sync.self_heal_interval_seconds)
            self.assertEqual("https://example.com/", app_config.tab.url)

    def test_missing_sections_use_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            _write_text(config_path, "")

            app_config = load_app_config(str(config_path))

            self.assertEqual("127.0.0.1", app_config.store.host)
            self.assertEqual(8766, app_config.store.port)
            self.assertEqual("", app_config.store.data_file)
            self.assertEqual(1.5, app_config.sync.hydration_timeout_seconds)
            self.assertEqual("", app_config.tab.url)

    def test_rejects_invalid_values(self) -> None:
        cases = {
            "[store]\nport = true\n": "store.port",
            "[store]\nhost = 5\n": "store.host",
            "[sync]\nwrite_timeout_seconds = -1\n": "sync.write_timeout_seconds",
            "[sync]\nreconcile_interval_seconds = \"fast\"\n": "sync.reconcile_interval_seconds",
            "store = 3\n": "[store]",
        }
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            for content, expected in cases.items():
                with self.subTest(expected=expected):
                    _write_text(config_path, content)
                    with self.assertRaises(AppConfigurationError) as context:
                        load_app_config(str(config_path))
                    self.assertIn(expected, str(context.exception))

    def test_rejects_missing_file_and_bad_toml(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            with self.assertRaisesRegex(AppConfigurationError, "not found"):
                load_app_config(str(root / "absent.toml"))

            broken = root / "broken.toml"
            _write_text(broken, "[store\nport = ")
            with self.assertRaisesRegex(AppConfigurationError, "parse"):
                load_app_config(str(broken))

    def test_resolve_config_path_prefers_env_variable(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            custom = Path(temp_dir) / "custom.toml"

            with patch.dict(os.environ, {"APP_CONFIG_FILE": str(custom)}, clear=True):
                self.assertEqual(custom, resolve_config_path())

    def test_resolve_config_path_defaults_to_cwd(self) -> None:
        with tempfile.TemporaryDirectory() as cwd_dir:
            cwd = Path(cwd_dir)
            with patch.dict(os.environ, {}, clear=True):
                with patch("app_config.Path.cwd", return_value=cwd):
                    resolved = resolve_config_path()

            self.assertEqual((cwd / "config.toml").resolve(), resolved)


class ResolveTabUrlTests(unittest.TestCase):
    def _config(self, url: str):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            _write_text(config_path, f'[tab]\nurl = "{url}"\n')
            return load_app_config(str(config_path))

    def test_environment_overrides_config(self) -> None:
        app_config = self._config("https://example.com/")

        self.assertEqual(
            "https://news.site/",
            resolve_tab_url(app_config, environ={"TAB_URL": " https://news.site/ "}),
        )
        self.assertEqual(
            "https://example.com/",
            resolve_tab_url(app_config, environ={"TAB_URL": "  "}),
        )

    def test_missing_url_raises(self) -> None:
        with self.assertRaisesRegex(AppConfigurationError, "TAB_URL"):
            resolve_tab_url(self._config(""), environ={})


if __name__ == "__main__":
    unittest.main()
