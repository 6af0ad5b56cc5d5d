"""Tests for the command-line entry point."""

from unittest.mock import MagicMock, patch

import main


def test_cli_defaults():
    args = main.build_cli_parser().parse_args([])
    assert args.config
    assert args.log_dir is None


def test_invalid_config_exits_with_error(tmp_path):
    bad = tmp_path / "config.yml"
    bad.write_text("topics: [unclosed\n")
    assert main.main(["--config", str(bad)]) == 2


def test_log_dir_flag_overrides_config(tmp_path):
    cfg = tmp_path / "config.yml"
    cfg.write_text("log_dir: /nowhere\ntopics: [t]\n")

    with patch.object(main, "asyncio") as fake_asyncio, \
            patch.object(main, "run", new_callable=MagicMock) as fake_run, \
            patch.object(main, "RecorderService") as fake_service:
        assert main.main(["--config", str(cfg), "--log-dir", str(tmp_path / "out")]) == 0

    config = fake_service.call_args.args[0]
    assert config.log_dir == str(tmp_path / "out")
    fake_run.assert_called_once_with(fake_service.return_value)
    fake_asyncio.run.assert_called_once_with(fake_run.return_value)
