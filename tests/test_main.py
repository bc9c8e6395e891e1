import pytest

from udp2serial import __main__ as entry
from udp2serial import config as config_module
from udp2serial.config import ExitCode


@pytest.fixture
def settings_path(tmp_path):
    return str(tmp_path / "settings.ini")


@pytest.fixture
def ports(monkeypatch):
    names = ["COM3", "COM4"]
    monkeypatch.setattr(config_module, "list_port_names", lambda: list(names))
    return names


@pytest.fixture
def runs(monkeypatch):
    calls = []
    monkeypatch.setattr(entry, "run_bridge", lambda config, verbose=False: calls.append((config, verbose)))
    return calls


def test_help_exit_code(settings_path, ports, runs, capsys):
    assert entry.main(["/?"], settings_path) == ExitCode.HELP_DISPLAY == 255
    out, err = capsys.readouterr()
    assert "usage: udp2serial" in out
    assert err == ""
    assert runs == []


@pytest.mark.parametrize(
    "args, code",
    [
        ([], 1),
        (["1", "COM3", "extra"], 1),
        (["0", "COM3"], 2),
        (["5505", "COM9"], 3),
    ],
)
def test_error_exit_codes(args, code, settings_path, ports, runs, capsys):
    assert entry.main(args, settings_path) == code
    err = capsys.readouterr().err
    assert err.startswith("ERROR: ")
    assert "usage: udp2serial" in err
    assert runs == []


def test_no_ports_exit_code(settings_path, monkeypatch, runs, capsys):
    monkeypatch.setattr(config_module, "list_port_names", lambda: [])
    assert entry.main(["5505"], settings_path) == ExitCode.NO_COM_PORTS_FOUND == 4
    assert "No local COM ports found." in capsys.readouterr().err


def test_success_runs_bridge(settings_path, ports, runs):
    assert entry.main(["-v", "5505"], settings_path) == ExitCode.SUCCESS
    (config, verbose), = runs
    assert config.udp_port == 5505
    assert config.serial_port_id == "COM3"
    assert verbose is True


def test_settings_file_created_and_applied(settings_path, ports, runs):
    entry.main(["5505", "COM4"], settings_path)
    with open(settings_path, encoding="utf-8") as f:
        assert ";BaudRate = 115200" in f.read()

    with open(settings_path, "w", encoding="utf-8") as f:
        f.write("[Serial]\nBaudRate = 9600\n")
    entry.main(["5505", "COM4"], settings_path)
    assert runs[0][0].baud_rate == 115200
    assert runs[1][0].baud_rate == 9600


def test_scoped_interface_from_settings_file(settings_path, ports, runs):
    with open(settings_path, "w", encoding="utf-8") as f:
        f.write("[UDP]\nInterfaceIP = fe80::1%eth0\n")
    assert entry.main(["5505", "COM3"], settings_path) == ExitCode.SUCCESS
    assert runs[0][0].interface_ip == "fe80::1%eth0"


def test_undecodable_settings_file_reported(settings_path, ports, runs, capsys):
    with open(settings_path, "wb") as f:
        f.write(b"[Serial]\nBaudRate = 96\xff00\n")
    assert entry.main(["5505", "COM3"], settings_path) == ExitCode.INVALID_COMMAND_LINE_ARGS
    err = capsys.readouterr().err
    assert err.startswith("ERROR: Bad settings file")
    assert runs == []


def test_quiet_by_default(settings_path, ports, runs):
    entry.main(["5505"], settings_path)
    assert runs[0][1] is False
