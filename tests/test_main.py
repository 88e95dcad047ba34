import json
import logging

import pytest

from mdblist_ratings.config_models import ConfigurationValidator
from mdblist_ratings.main import ServiceLauncher, main


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Writes a minimal config and points logs at the temporary directory."""
    for name in ConfigurationValidator.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("MDBLIST_UPDATE_ONLY_EMPTY", raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))

    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "mdblist": {"api_key": "key"},
        "storage": {"data_dir": str(tmp_path / "data")},
        "server": {"port": 2001, "log_level": "INFO"},
    }), encoding="utf-8")

    yield path

    logger = logging.getLogger("mdblist_ratings")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def test_launcher_runs_uvicorn_with_configured_server(config_file, mocker):
    run = mocker.patch("mdblist_ratings.main.uvicorn.run")

    ServiceLauncher(str(config_file)).run()

    run.assert_called_once()
    kwargs = run.call_args.kwargs
    assert kwargs["port"] == 2001
    assert kwargs["log_level"] == "info"
    assert kwargs["access_log"] is False
    assert (config_file.parent / "logs" / "mdblist_ratings.log").exists()


def test_launcher_exits_on_server_error(config_file, mocker):
    mocker.patch("mdblist_ratings.main.uvicorn.run", side_effect=OSError("address in use"))

    with pytest.raises(SystemExit) as exc_info:
        ServiceLauncher(str(config_file)).run()
    assert exc_info.value.code == 1


def test_launcher_handles_keyboard_interrupt(config_file, mocker):
    mocker.patch("mdblist_ratings.main.uvicorn.run", side_effect=KeyboardInterrupt)

    ServiceLauncher(str(config_file)).run()


def test_main_reads_config_path_from_environment(config_file, monkeypatch, mocker):
    monkeypatch.setenv("MDBLIST_CONFIG", str(config_file))
    run = mocker.patch("mdblist_ratings.main.uvicorn.run")

    main()

    assert run.call_args.kwargs["port"] == 2001
