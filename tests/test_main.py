"""
Tests for the demo programs.

The primary's wait step is replaced by a function that runs a second
"invocation" in-process, so both sides of the exchange are exercised without
stdin or subprocesses.
"""

import time

import pytest

from single_instance import main as demo
from single_instance import request


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestBasicDemo:

    def test_primary_then_secondary(self, fast_cfg, capsys):
        secondary_codes = []

        def wait_for_exit():
            secondary_codes.append(demo.run_basic(fast_cfg, wait_for_exit=lambda: None))

        code = demo.run_basic(fast_cfg, wait_for_exit)

        out = capsys.readouterr().out
        assert code == 0
        assert secondary_codes == [1]
        assert "There is no instance currently running" in out
        assert "There is already an instance running so we close." in out
        assert "Finished, now another instance can run." in out

    def test_port_free_after_demo(self, fast_cfg):
        assert demo.run_basic(fast_cfg, wait_for_exit=lambda: None) == 0
        instance = request(config=fast_cfg)
        assert instance is not None
        instance.release()


class TestParameterPassingDemo:

    def test_parameter_reaches_primary(self, fast_cfg, capsys):
        captured = []

        def param_printed():
            captured.append(capsys.readouterr().out)
            return 'Param received:' in "".join(captured)

        def wait_for_exit():
            code = demo.run_parameter_passing(fast_cfg, "open file.txt", wait_for_exit=lambda: None)
            assert code == 1
            # the primary prints from its responder thread
            assert _wait_until(param_printed)

        assert demo.run_parameter_passing(fast_cfg, "ignored", wait_for_exit) == 0

        captured.append(capsys.readouterr().out)
        out = "".join(captured)
        assert 'Param received: "open file.txt"' in out
        assert "But we sent it the param we received." in out


class TestCommandLine:

    def test_parse_args_param_default(self):
        args = demo.parse_args(["param"])
        assert args.mode == "param"
        assert args.value == demo.DEFAULT_PARAMETER == "HELLO WORLD!"
        assert args.port is None

    def test_parse_args_requires_mode(self):
        with pytest.raises(SystemExit):
            demo.parse_args([])

    def test_invalid_port_exit_code(self):
        assert demo.main(["--port", "70000", "basic"]) == 2

    def test_missing_config_exit_code(self, tmp_path):
        assert demo.main(["--config", str(tmp_path / "missing.ini"), "basic"]) == 2
