import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import ADMIN_TOKEN, API_URL, healthy_runner
from nodedeploy import __version__
from nodedeploy.constants import PARAMETER_ENV_VARS, ROOT_ENV_VAR
from nodedeploy.main import cli


@pytest.fixture
def invoke(tmp_path):
    env = {env_var: None for env_var in PARAMETER_ENV_VARS.values()}
    env[ROOT_ENV_VAR] = str(tmp_path / "root")
    env["COLUMNS"] = "200"
    runner = CliRunner()

    def run(*args):
        return runner.invoke(cli, list(args), env=env)

    return run


class TestCli:
    def test_version(self, invoke):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, invoke):
        result = invoke("--help")
        assert result.exit_code == 0
        for name in ("deploy", "update", "uninstall", "status", "rollback", "backups:list"):
            assert name in result.output

    def test_invalid_protocol_exits_before_any_network_call(self, invoke):
        with patch("nodedeploy.core.deployer.NodeDeployer.create") as create:
            result = invoke(
                "deploy",
                "--api-url", API_URL,
                "--admin-token", ADMIN_TOKEN,
                "--node-name", "edge-1",
                "--node-protocol", "foo",
            )
        assert result.exit_code == 1
        assert "Invalid protocol" in result.output
        create.assert_not_called()

    def test_world_readable_batch_config(self, invoke, tmp_path):
        batch_file = tmp_path / "nodes.yaml"
        batch_file.write_text(
            f"api_url: {API_URL}\nadmin_token: {ADMIN_TOKEN}\nnodes:\n  - name: a\n"
        )
        batch_file.chmod(0o644)

        result = invoke("deploy", "--batch-config", str(batch_file), "--batch-target", "local")

        assert result.exit_code == 1
        assert "chmod 600" in result.output

    def test_status_json(self, invoke):
        with patch("nodedeploy.commands.status.CommandRunner", return_value=healthy_runner()):
            result = invoke("status", "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["deployed"] is False
        assert data["services"]["node-agent"]["active"] == "active"

    def test_backups_list_json_empty(self, invoke):
        result = invoke("backups:list", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output) == {"backups": []}

    def test_prune_requires_keep(self, invoke):
        result = invoke("backups:prune")
        assert result.exit_code == 2
