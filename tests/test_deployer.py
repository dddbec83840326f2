import os
import signal

import pytest
import requests

from conftest import (
    ADMIN_TOKEN,
    API_URL,
    api_response,
    fail,
    healthy_runner,
    install_binaries,
    make_config,
    ok,
)
from nodedeploy.exceptions import (
    APIError,
    EnvironmentCheckError,
    InstallError,
    NodeConflictError,
    ParameterError,
    ServiceError,
    TerminatedError,
)
from nodedeploy.models.deployment import DeploymentMode, Phase
from nodedeploy.utils.files import file_mode
from nodedeploy.utils.signals import termination_signals

SECRET = "L" * 32


def existing_agent_config(paths, node_id="7", secret="S" * 32, extra=""):
    paths.agent_config.parent.mkdir(parents=True, exist_ok=True)
    paths.agent_config.write_text(
        f"API_URL={API_URL}\nNODE_ID={node_id}\nNODE_SECRET={secret}\n{extra}"
    )


class TestFreshDeployment:
    def test_successful_deployment(self, paths, session, build_deployer):
        install_binaries(paths)
        deployer = build_deployer()

        outcome = deployer.deploy(make_config())

        assert outcome.config.node_id == "42"
        assert outcome.config.node_secret == SECRET
        assert outcome.state.phase == Phase.COMPLETE
        assert outcome.verification.passed
        assert outcome.state.warning_count == 0

        env = paths.agent_config.read_text()
        assert "NODE_ID=42\n" in env
        assert f"NODE_SECRET={SECRET}\n" in env
        assert file_mode(paths.agent_config) == 0o600
        assert file_mode(paths.proxy_config) == 0o600
        assert paths.service_unit.exists()
        assert session.post.call_args[1]["json"]["secret"] == SECRET

    def test_detects_public_ip_when_host_missing(self, paths, session, build_deployer):
        install_binaries(paths)
        session.get.return_value.text = "198.51.100.7\n"
        deployer = build_deployer()

        outcome = deployer.deploy(make_config(node_host=None))

        assert outcome.config.node_host == "198.51.100.7"
        assert session.post.call_args[1]["json"]["host"] == "198.51.100.7"

    def test_secrets_never_reach_the_log(self, paths, logger, build_deployer):
        install_binaries(paths)
        build_deployer().deploy(make_config())

        text = logger.log_path.read_text()
        assert SECRET not in text
        assert ADMIN_TOKEN not in text
        assert "LLLLLLLL..." in text

    def test_cancel_is_rejected(self, build_deployer):
        with pytest.raises(ParameterError):
            build_deployer().deploy(make_config(), mode=DeploymentMode.CANCEL)

    def test_redeploy_stops_running_services(self, paths, build_deployer):
        install_binaries(paths)
        existing_agent_config(paths)
        runner = healthy_runner()
        deployer = build_deployer(runner)

        outcome = deployer.deploy(make_config(), mode=DeploymentMode.REDEPLOY)

        assert outcome.config.node_id == "42"
        assert runner.called("systemctl", "stop", "node-agent")
        assert runner.called("systemctl", "stop", "xray")
        assert len(deployer.backup.list_snapshots()) == 1


class TestFailureHandling:
    def test_conflict_leaves_host_untouched(self, paths, session, build_deployer):
        session.post.return_value = api_response(409, {"error": "name taken"})
        deployer = build_deployer()

        with pytest.raises(NodeConflictError) as exc_info:
            deployer.deploy(make_config())

        assert exc_info.value.exit_code == 4
        assert deployer.state.phase == Phase.API_CALL
        assert not paths.agent_config.exists()
        assert not paths.proxy_config.exists()
        assert not paths.service_unit.exists()
        assert not paths.backup_dir.exists()

    def test_install_failure_rolls_back(self, paths, session, build_deployer):
        session.get.side_effect = requests.exceptions.ConnectionError("github unreachable")
        deployer = build_deployer()

        with pytest.raises(InstallError) as exc_info:
            deployer.deploy(make_config())

        assert exc_info.value.exit_code == 5
        assert deployer.state.phase == Phase.INSTALL
        assert deployer.state.error_count == 1
        assert not paths.agent_config.exists()
        assert not paths.proxy_config.exists()
        assert not paths.service_unit.exists()

    def test_start_failure_restores_previous_config(self, paths, build_deployer):
        install_binaries(paths)
        existing_agent_config(paths, node_id="old")
        paths.proxy_config.parent.mkdir(parents=True)
        paths.proxy_config.write_text('{"inbounds": []}\n')

        runner = healthy_runner()
        runner.on("systemctl", "is-active", result=fail(3, "inactive"))
        runner.on("systemctl", "start", result=fail(1, "Job for xray.service failed"))
        deployer = build_deployer(runner)

        with pytest.raises(ServiceError) as exc_info:
            deployer.deploy(make_config())

        assert exc_info.value.exit_code == 6
        assert deployer.state.phase == Phase.START
        assert "NODE_ID=old\n" in paths.agent_config.read_text()
        assert paths.proxy_config.read_text() == '{"inbounds": []}\n'
        assert not paths.service_unit.exists()

    def test_verification_failure_keeps_services(self, paths, build_deployer):
        install_binaries(paths)
        calls = []

        def show(args):
            calls.append(args)
            if len(calls) <= 2:
                return ok("ActiveState=active\nSubState=running\n")
            return ok("ActiveState=failed\nSubState=failed\n")

        runner = healthy_runner().on("systemctl", "show", result=show)
        deployer = build_deployer(runner)

        with pytest.raises(ServiceError, match="verification failed"):
            deployer.deploy(make_config())

        assert deployer.state.phase == Phase.VERIFY
        assert deployer.state.warning_count == 1
        assert paths.agent_config.exists()
        assert not runner.called("systemctl", "stop")

    def test_unexpected_error_is_classified_by_phase(self, paths, session, build_deployer):
        session.post.side_effect = RuntimeError("boom")
        deployer = build_deployer()

        with pytest.raises(APIError, match="boom"):
            deployer.deploy(make_config())

    def test_sigterm_during_start_rolls_back(self, paths, build_deployer):
        install_binaries(paths)
        existing_agent_config(paths, node_id="old")

        def terminate(args):
            os.kill(os.getpid(), signal.SIGTERM)
            return ok()

        runner = healthy_runner()
        runner.on("systemctl", "is-active", result=fail(3, "inactive"))
        runner.on("systemctl", "start", result=terminate)
        deployer = build_deployer(runner)

        with termination_signals():
            with pytest.raises(TerminatedError) as exc_info:
                deployer.deploy(make_config())

        assert exc_info.value.exit_code == 143
        assert deployer.state.phase == Phase.START
        assert deployer.state.error_count == 1
        assert "NODE_ID=old\n" in paths.agent_config.read_text()
        assert SECRET not in paths.agent_config.read_text()
        assert runner.called("systemctl", "stop")


class TestEnvironmentPhase:
    def test_environment_failure_is_recorded(self, build_deployer):
        deployer = build_deployer()
        deployer.probe.geteuid = lambda: 1000

        with pytest.raises(EnvironmentCheckError):
            deployer.check_environment()

        assert deployer.state.phase == Phase.ENV_CHECK
        assert deployer.state.error_count == 1
        assert deployer.logger.summary["phase"] == "env_check"
        assert deployer.logger.summary["errors"] == 1

    def test_environment_check_passes(self, build_deployer):
        deployer = build_deployer()

        os_info = deployer.check_environment()

        assert os_info.os_id == "ubuntu"
        assert deployer.state.phase == Phase.ENV_CHECK
        assert deployer.state.error_count == 0


class TestVerification:
    def test_soft_failures_are_warnings(self, paths, session, build_deployer):
        install_binaries(paths)
        session.head.side_effect = requests.exceptions.ConnectionError("refused")
        runner = healthy_runner(port=8443)
        runner.on("journalctl", result=ok("node-agent: error reporting traffic\n"))
        deployer = build_deployer(runner)

        outcome = deployer.deploy(make_config())

        assert outcome.state.phase == Phase.COMPLETE
        assert len(outcome.verification.warnings) == 3
        assert outcome.state.warning_count == 3


class TestUpdate:
    def test_update_keeps_identity(self, paths, session, build_deployer):
        install_binaries(paths)
        existing_agent_config(paths, node_id="7")
        runner = healthy_runner()
        deployer = build_deployer(runner)

        outcome = deployer.deploy(make_config(admin_token=""), mode=DeploymentMode.UPDATE)

        assert outcome.config.node_id == "7"
        assert outcome.config.node_secret == "S" * 32
        session.post.assert_not_called()
        assert "NODE_ID=7\n" in paths.agent_config.read_text()
        assert runner.called("systemctl", "restart", "xray")
        assert runner.called("systemctl", "restart", "node-agent")
        assert not runner.called("systemctl", "start")

    def test_update_without_identity(self, paths, session, build_deployer):
        deployer = build_deployer()

        with pytest.raises(ParameterError, match="No existing node identity"):
            deployer.deploy(make_config(), mode=DeploymentMode.UPDATE)

        assert deployer.state.phase == Phase.ENV_CHECK
        session.post.assert_not_called()
