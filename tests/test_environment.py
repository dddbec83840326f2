import pytest

from conftest import FakeRunner, all_tools, fail, write_os_release
from nodedeploy.core.environment import EnvironmentProbe, parse_os_release
from nodedeploy.exceptions import EnvironmentCheckError


class ToolBox:
    """shutil.which stand-in whose set of installed tools can grow."""

    def __init__(self, installed):
        self.installed = set(installed)

    def __call__(self, tool, **kwargs):
        return f"/usr/bin/{tool}" if tool in self.installed else None


def make_probe(paths, logger, runner=None, euid=0, which=all_tools):
    return EnvironmentProbe(
        paths, runner or FakeRunner(), logger, geteuid=lambda: euid, which=which
    )


class TestParseOsRelease:
    def test_unquotes_values(self):
        values = parse_os_release(
            'NAME="Ubuntu"\nID=ubuntu\n# comment\nVERSION_ID="22.04"\n\nbroken line\n'
        )
        assert values == {"NAME": "Ubuntu", "ID": "ubuntu", "VERSION_ID": "22.04"}


class TestEnvironmentProbe:
    def test_requires_root(self, paths, logger):
        with pytest.raises(EnvironmentCheckError, match="root") as exc_info:
            make_probe(paths, logger, euid=1000).probe()
        assert exc_info.value.exit_code == 2

    @pytest.mark.parametrize(
        "os_id,family", [("ubuntu", "ubuntu"), ("debian", "debian"), ("rhel", "centos")]
    )
    def test_supported_distributions(self, paths, logger, os_id, family):
        write_os_release(paths, os_id)
        info = make_probe(paths, logger).probe()
        assert info.os_type == family
        assert info.os_id == os_id

    def test_unsupported_distribution(self, paths, logger):
        write_os_release(paths, "alpine", "3.19")
        with pytest.raises(EnvironmentCheckError, match="Unsupported operating system: alpine"):
            make_probe(paths, logger).probe()

    def test_missing_os_release(self, paths, logger):
        with pytest.raises(EnvironmentCheckError, match="Cannot detect"):
            make_probe(paths, logger).probe()

    def test_installs_missing_tools_with_apt(self, paths, logger):
        write_os_release(paths, "debian", "12")
        tools = ToolBox(["curl", "openssl"])

        def apt_install(args):
            tools.installed.update(["jq", "systemctl"])
            return FakeRunner().run(args)

        runner = FakeRunner().on("apt-get", "install", result=apt_install)
        probe = make_probe(paths, logger, runner=runner, which=tools)

        probe.probe()

        assert runner.called("apt-get", "update", "-qq")
        install = runner.called("apt-get", "install")[0]
        assert install[-2:] == ["jq", "systemd"]

    def test_installs_with_yum_on_centos(self, paths, logger):
        write_os_release(paths, "centos", "8")
        tools = ToolBox(["curl", "systemctl", "openssl"])

        def yum_install(args):
            tools.installed.add("jq")
            return FakeRunner().run(args)

        runner = FakeRunner().on("yum", result=yum_install)
        make_probe(paths, logger, runner=runner, which=tools).probe()

        assert runner.called("yum", "install", "-y", "-q", "jq")
        assert not runner.called("apt-get")

    def test_package_install_failure(self, paths, logger):
        write_os_release(paths, "ubuntu")
        runner = FakeRunner().on("apt-get", "install", result=fail(100, "E: Unable to locate package"))
        probe = make_probe(paths, logger, runner=runner, which=ToolBox(["curl"]))

        with pytest.raises(EnvironmentCheckError, match="Failed to install required packages"):
            probe.probe()

    def test_tools_still_missing_after_install(self, paths, logger):
        write_os_release(paths, "ubuntu")
        probe = make_probe(paths, logger, which=ToolBox([]))

        with pytest.raises(EnvironmentCheckError, match="still missing"):
            probe.probe()
