from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeRunner, fail, install_binaries, make_config, ok
from nodedeploy.exceptions import InstallError
from nodedeploy.models.results import InstallStatus
from nodedeploy.services.installer import InstallManager
from nodedeploy.utils.files import file_mode


def download_response(payload: bytes) -> MagicMock:
    response = MagicMock()
    response.iter_content.return_value = [payload]
    return response


def make_installer(paths, logger, runner=None, session=None, machine="x86_64", force=False, sleeps=None):
    return InstallManager(
        paths,
        runner or FakeRunner(),
        logger,
        force=force,
        session=session or MagicMock(),
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
        machine=lambda: machine,
        which=lambda *args, **kwargs: None,
    )


class TestEnsureBinaries:
    def test_present_binaries_are_skipped(self, paths, logger):
        install_binaries(paths)
        session = MagicMock()
        installer = make_installer(paths, logger, session=session)

        for _ in range(2):
            proxy = installer.ensure_proxy_engine()
            agent = installer.ensure_agent()
            assert proxy.status == InstallStatus.ALREADY_PRESENT
            assert agent.status == InstallStatus.ALREADY_PRESENT
            assert "already installed" in agent.message

        session.get.assert_not_called()

    def test_agent_installs_once_then_skips(self, paths, logger):
        session = MagicMock()
        session.get.return_value = download_response(b"\x7fELF" + b"\0" * 4096)
        installer = make_installer(paths, logger, session=session)

        first = installer.ensure_agent()
        second = installer.ensure_agent()

        assert first.status == InstallStatus.INSTALLED
        assert second.status == InstallStatus.ALREADY_PRESENT
        assert session.get.call_count == 1
        assert paths.agent_binary.read_bytes() == b"\x7fELF" + b"\0" * 4096

    def test_proxy_engine_installs_once_then_skips(self, paths, logger):
        def run_installer(args):
            paths.proxy_binary.parent.mkdir(parents=True, exist_ok=True)
            paths.proxy_binary.write_bytes(b"\0" * 2000)
            return ok()

        runner = FakeRunner().on("bash", result=run_installer)
        session = MagicMock()
        session.get.return_value = download_response(b"#!/bin/bash\n")
        installer = make_installer(paths, logger, runner=runner, session=session)

        first = installer.ensure_proxy_engine()
        second = installer.ensure_proxy_engine()

        assert first.status == InstallStatus.INSTALLED
        assert second.status == InstallStatus.ALREADY_PRESENT
        assert len(runner.called("bash")) == 1
        assert session.get.call_count == 1

    def test_agent_download(self, paths, logger):
        session = MagicMock()
        session.get.return_value = download_response(b"\x7fELF" + b"\0" * 4096)
        installer = make_installer(paths, logger, session=session, machine="aarch64")

        result = installer.ensure_agent()

        assert result.status == InstallStatus.INSTALLED
        assert paths.agent_binary.exists()
        assert file_mode(paths.agent_binary) == 0o755
        url = session.get.call_args[0][0]
        assert url.endswith("/node-agent-aarch64")

    def test_download_is_retried(self, paths, logger):
        session = MagicMock()
        session.get.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            requests.exceptions.ConnectionError("reset"),
            download_response(b"\0" * 2048),
        ]
        sleeps = []
        installer = make_installer(paths, logger, session=session, sleeps=sleeps)

        assert installer.ensure_agent().status == InstallStatus.INSTALLED
        assert sleeps == [3, 3]

    def test_download_failure_reports_failed_result(self, paths, logger):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("offline")
        installer = make_installer(paths, logger, session=session)

        result = installer.ensure_agent()

        assert result.is_failure
        assert session.get.call_count == 3
        with pytest.raises(InstallError):
            result.raise_for_status()

    def test_truncated_binary_is_rejected(self, paths, logger):
        session = MagicMock()
        session.get.return_value = download_response(b"Not Found")
        installer = make_installer(paths, logger, session=session)

        result = installer.ensure_agent()

        assert result.is_failure
        assert "too small" in result.message
        assert not paths.agent_binary.exists()

    def test_unsupported_architecture(self, paths, logger):
        session = MagicMock()
        installer = make_installer(paths, logger, session=session, machine="mips")

        result = installer.ensure_agent()

        assert result.is_failure
        assert "Unsupported architecture" in result.message
        session.get.assert_not_called()

    def test_force_reinstalls(self, paths, logger):
        install_binaries(paths)
        session = MagicMock()
        session.get.return_value = download_response(b"\1" * 3000)
        installer = make_installer(paths, logger, session=session, force=True)

        assert installer.ensure_agent().status == InstallStatus.INSTALLED
        assert paths.agent_binary.read_bytes() == b"\1" * 3000

    def test_proxy_engine_install_script(self, paths, logger):
        def run_installer(args):
            paths.proxy_binary.parent.mkdir(parents=True, exist_ok=True)
            paths.proxy_binary.write_bytes(b"\0" * 2000)
            return ok()

        runner = FakeRunner().on("bash", result=run_installer)
        runner.on("xray", "version", result=ok("Xray 1.8.4 (Xray, Penetrates Everything.)\n"))
        session = MagicMock()
        session.get.return_value = download_response(b"#!/bin/bash\n")
        installer = make_installer(paths, logger, runner=runner, session=session)

        result = installer.ensure_proxy_engine()

        assert result.status == InstallStatus.INSTALLED
        assert result.version.startswith("Xray 1.8.4")
        assert runner.called("systemctl", "enable", "xray")

    def test_proxy_engine_script_failure(self, paths, logger):
        runner = FakeRunner().on("bash", result=fail(1, "unsupported distribution"))
        session = MagicMock()
        session.get.return_value = download_response(b"#!/bin/bash\n")
        installer = make_installer(paths, logger, runner=runner, session=session)

        result = installer.ensure_proxy_engine()

        assert result.is_failure
        assert "installation script failed" in result.message


class TestConfigFiles:
    def test_agent_config_is_owner_only(self, paths, logger):
        installer = make_installer(paths, logger)

        path = installer.render_agent_config("42", "S" * 32, "https://panel.example.com")

        assert file_mode(path) == 0o600
        content = path.read_text()
        assert "NODE_ID=42\n" in content
        assert f"NODE_SECRET={'S' * 32}\n" in content
        assert "API_URL=https://panel.example.com\n" in content
        assert "XRAY_API_PORT=10085\n" in content

    def test_agent_config_requires_identity(self, paths, logger):
        installer = make_installer(paths, logger)
        with pytest.raises(InstallError, match="node secret"):
            installer.render_agent_config("42", "", "https://panel.example.com")
        assert not paths.agent_config.exists()

    def test_proxy_config_requires_secret(self, paths, logger):
        installer = make_installer(paths, logger)
        with pytest.raises(InstallError):
            installer.render_proxy_config(make_config())

    def test_proxy_config_written(self, paths, logger):
        installer = make_installer(paths, logger)
        installer.render_proxy_config(make_config(node_id="42", node_secret="S" * 32))
        assert '"protocol": "vless"' in paths.proxy_config.read_text()

    def test_permission_checks(self, paths, logger):
        installer = make_installer(paths, logger)
        installer.render_agent_config("42", "S" * 32, "https://panel.example.com")
        installer.render_proxy_config(make_config(node_id="42", node_secret="S" * 32))

        result = installer.verify_config_permissions()
        assert result.has_errors
        assert str(paths.proxy_config) in result.errors[0]

        installer.secure_config_files()
        result = installer.verify_config_permissions()
        assert not result.has_errors
        assert not result.has_warnings

    def test_unusual_owner_mode_is_a_warning(self, paths, logger):
        installer = make_installer(paths, logger)
        path = installer.render_agent_config("42", "S" * 32, "https://panel.example.com")
        path.chmod(0o700)

        result = installer.verify_config_permissions()
        assert not result.has_errors
        assert result.has_warnings
