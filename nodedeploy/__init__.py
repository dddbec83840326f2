"""nodedeploy - VPN node provisioning orchestrator."""

__version__ = "1.0.0"
