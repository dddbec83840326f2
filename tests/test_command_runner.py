import time

import pytest

from nodedeploy.logger import DeployLogger
from nodedeploy.services.command_runner import CommandRunner


@pytest.fixture
def verbose_logger(tmp_path):
    log = DeployLogger("test", "edge-1", verbose=True, log_dir=tmp_path / "logs")
    yield log
    log.close()


class TestCommandRunner:
    def test_verbose_output_is_streamed_and_captured(self, verbose_logger):
        runner = CommandRunner(verbose_logger)

        result = runner.run(["sh", "-c", "echo one; echo two"], description="Echoing")

        assert result.returncode == 0
        assert result.stdout == "one\ntwo"
        assert "one" in verbose_logger.log_path.read_text()

    def test_verbose_command_is_killed_at_timeout(self, verbose_logger):
        runner = CommandRunner(verbose_logger)

        started = time.monotonic()
        result = runner.run(["sleep", "30"], timeout=1, description="Sleeping")

        assert result.returncode == 124
        assert "Timed out after 1s" in result.stderr
        assert time.monotonic() - started < 10

    def test_quiet_command_is_killed_at_timeout(self, logger):
        runner = CommandRunner(logger)

        started = time.monotonic()
        result = runner.run(["sleep", "30"], timeout=1, description="Sleeping")

        assert result.returncode == 124
        assert time.monotonic() - started < 10

    def test_missing_binary(self, logger):
        result = CommandRunner(logger).run(["nodedeploy-no-such-binary"])

        assert result.returncode == 127
