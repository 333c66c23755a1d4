import io

from controllers.command_controller import HELP, CommandController, ConsoleReader


class _Target:
    def __init__(self):
        self.calls = []
        self.stopped = False

    def stop(self):
        first = not self.stopped
        self.stopped = True
        return first

    def sell(self):
        self.calls.append("sell")
        return True

    def request_collect(self):
        self.calls.append("collect")
        return True

    def update_config(self, key, raw):
        self.calls.append((key, raw))
        return key == "buy_interval"

    def describe(self):
        return "buy_interval: 5"


def test_stop_is_idempotent():
    cmd = CommandController(_Target())
    assert cmd.handle("stop") == "Deteniendo sesiones"
    assert cmd.handle("/stop") == "Parada ya en curso"


def test_set_routes_key_and_value():
    target = _Target()
    cmd = CommandController(target)
    assert "actualizado" in cmd.handle("set buy_interval 3")
    assert "No se pudo" in cmd.handle("set thread_count 3")
    assert cmd.handle("set buy_interval").startswith("Uso")
    assert target.calls == [("buy_interval", "3"), ("thread_count", "3")]


def test_config_help_and_unknown():
    cmd = CommandController(_Target())
    assert cmd.handle("config") == "buy_interval: 5"
    assert cmd.handle("") == HELP
    assert cmd.handle("help") == HELP
    assert cmd.handle("moon").startswith("Comando desconocido")


def test_console_reader_handles_each_line():
    target = _Target()
    out = []
    reader = ConsoleReader(CommandController(target), stream=io.StringIO("sell\n\ncollect\n"), output=out.append)
    reader.start()
    reader._thread.join(timeout=2)
    assert target.calls == ["sell", "collect"]
    assert len(out) == 2
