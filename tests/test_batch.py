from unittest.mock import patch

from conftest import ADMIN_TOKEN, API_URL, api_response, healthy_runner, install_binaries
from nodedeploy.core.batch import BatchOrchestrator
from nodedeploy.core.batch_config import BatchConfig, BatchNodeSpec
from nodedeploy.models.results import BatchStatus, InstallResult, InstallStatus


def batch_of(*specs):
    return BatchConfig(api_url=API_URL, admin_token=ADMIN_TOKEN, nodes=list(specs), target="local")


class TestBatchOrchestrator:
    def test_all_nodes_succeed(self, paths, logger, session, build_deployer):
        install_binaries(paths)
        session.post.side_effect = [api_response(201, {"id": n}) for n in (1, 2)]
        orchestrator = BatchOrchestrator(build_deployer(), logger)

        report = orchestrator.run(
            batch_of(
                BatchNodeSpec("edge-1", host="203.0.113.1"),
                BatchNodeSpec("edge-2", host="203.0.113.2", port=8443, protocol="trojan"),
            )
        )

        assert report.total == 2
        assert report.success_count == 2
        assert [r.message for r in report.results] == ["Node ID: 1", "Node ID: 2"]

    def test_failure_does_not_stop_the_batch(self, paths, logger, session, build_deployer):
        install_binaries(paths)
        session.post.side_effect = [
            api_response(201, {"id": 1}),
            api_response(409, {"error": "exists"}),
            api_response(201, {"id": 3}),
        ]
        orchestrator = BatchOrchestrator(build_deployer(), logger)

        report = orchestrator.run(
            batch_of(
                BatchNodeSpec("edge-1", host="203.0.113.1"),
                BatchNodeSpec("edge-2", host="203.0.113.2"),
                BatchNodeSpec("edge-3", host="203.0.113.3"),
            )
        )

        assert [r.node_name for r in report.results] == ["edge-1", "edge-2", "edge-3"]
        assert [r.status for r in report.results] == [
            BatchStatus.SUCCESS,
            BatchStatus.FAILED,
            BatchStatus.SUCCESS,
        ]
        assert report.success_count == 2
        assert report.failed_count == 1
        assert report.failed[0].exit_code == 4
        assert report.is_success

    def test_install_failure_in_middle_node(self, paths, logger, session, build_deployer):
        install_binaries(paths)
        session.post.side_effect = [api_response(201, {"id": n}) for n in (1, 2, 3)]
        deployer = build_deployer()
        present = InstallResult("Node Agent", InstallStatus.ALREADY_PRESENT)
        broken = InstallResult("Node Agent", InstallStatus.FAILED, "download truncated")
        orchestrator = BatchOrchestrator(deployer, logger)

        with patch.object(deployer.installer, "ensure_agent", side_effect=[present, broken, present]):
            report = orchestrator.run(
                batch_of(
                    BatchNodeSpec("edge-1", host="203.0.113.1"),
                    BatchNodeSpec("edge-2", host="203.0.113.2"),
                    BatchNodeSpec("edge-3", host="203.0.113.3"),
                )
            )

        assert session.post.call_count == 3
        assert report.success_count == 2
        assert report.failed_count == 1
        assert report.results[1].node_name == "edge-2"
        assert report.results[1].exit_code == 5
        assert [r.message for r in report.succeeded] == ["Node ID: 1", "Node ID: 3"]

    def test_invalid_entry_is_recorded(self, paths, logger, session, build_deployer):
        install_binaries(paths)
        orchestrator = BatchOrchestrator(build_deployer(), logger)

        report = orchestrator.run(batch_of(BatchNodeSpec("bad", host="203.0.113.9", protocol="foo")))

        assert report.failed_count == 1
        assert report.results[0].exit_code == 1
        assert not report.is_success
        session.post.assert_not_called()

    def test_environment_probe_skipped_per_node(self, paths, logger, build_deployer):
        install_binaries(paths)
        deployer = build_deployer(healthy_runner())
        deployer.probe.geteuid = lambda: 1000
        orchestrator = BatchOrchestrator(deployer, logger)

        report = orchestrator.run(batch_of(BatchNodeSpec("edge-1", host="203.0.113.1")))

        assert report.success_count == 1

    def test_report_dict(self, paths, logger, build_deployer):
        install_binaries(paths)
        report = BatchOrchestrator(build_deployer(), logger).run(
            batch_of(BatchNodeSpec("edge-1", host="203.0.113.1"))
        )
        assert report.to_dict()["results"] == [
            {"node_name": "edge-1", "status": "success", "message": "Node ID: 42", "exit_code": 0}
        ]
