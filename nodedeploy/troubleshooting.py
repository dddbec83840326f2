"""Failure-specific troubleshooting tips shown after a command fails."""

from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from nodedeploy.constants import (
    AGENT_BINARY_PATH,
    AGENT_CONFIG_FILE,
    AGENT_SERVICE,
    EXIT_API_ERROR,
    EXIT_ENVIRONMENT_ERROR,
    EXIT_INSTALL_ERROR,
    EXIT_NETWORK_ERROR,
    EXIT_PARAMETER_ERROR,
    EXIT_SERVICE_ERROR,
    NODES_ENDPOINT,
    PROXY_CONFIG_FILE,
    PROXY_SERVICE,
)

TIPS: Dict[int, Dict[str, Any]] = {
    EXIT_PARAMETER_ERROR: {
        "title": "Parameter Error",
        "checks": [
            "Provide --api-url, --admin-token and --node-name (or API_URL, ADMIN_TOKEN, NODE_NAME)",
            "API URL must use https",
            "Port must be 1-65535, protocol one of vless, vmess, trojan, shadowsocks, hysteria2",
            "nodedeploy deploy --help",
        ],
        "paths": [],
        "causes": ["Malformed admin token", "Batch config readable by other users (chmod 600)"],
    },
    EXIT_ENVIRONMENT_ERROR: {
        "title": "Environment Error",
        "checks": ["id -u   (must be 0, run with sudo)", "cat /etc/os-release"],
        "paths": ["/etc/os-release"],
        "causes": [
            "Not running as root",
            "Unsupported distribution (Ubuntu, Debian, CentOS, RHEL)",
            "Another nodedeploy run holds the lock",
        ],
    },
    EXIT_NETWORK_ERROR: {
        "title": "Network Error",
        "checks": ["ping -c 3 8.8.8.8", "curl -I {api_url}", "ufw status / iptables -L"],
        "paths": [],
        "causes": ["No outbound connectivity", "Wrong API URL", "Firewall or DNS issues"],
    },
    EXIT_API_ERROR: {
        "title": "API Error",
        "checks": [
            "curl -H 'Authorization: Bearer YOUR_TOKEN' {api_url}" + NODES_ENDPOINT,
        ],
        "paths": [],
        "causes": [
            "Admin token expired or lacks admin permissions",
            "A node with the same name already exists",
        ],
    },
    EXIT_INSTALL_ERROR: {
        "title": "Installation Error",
        "checks": ["df -h /", "ls -la /usr/local/bin"],
        "paths": [AGENT_BINARY_PATH, AGENT_CONFIG_FILE, PROXY_CONFIG_FILE],
        "causes": ["Not enough disk space", "Release download failed or was truncated"],
    },
    EXIT_SERVICE_ERROR: {
        "title": "Service Error",
        "checks": [
            f"systemctl status {AGENT_SERVICE}",
            f"systemctl status {PROXY_SERVICE}",
            f"journalctl -u {AGENT_SERVICE} -n 50 --no-pager",
            "ss -tuln | grep {node_port}",
        ],
        "paths": [AGENT_CONFIG_FILE, PROXY_CONFIG_FILE],
        "causes": ["Port already in use", "Invalid proxy configuration", "Agent cannot reach the API"],
    },
}


def render_troubleshooting(
    exit_code: int,
    api_url: Optional[str] = None,
    node_port: Optional[int] = None,
    log_path: Optional[str] = None,
) -> Optional[str]:
    """Build the troubleshooting text for an exit code, or None if there is none."""
    tips = TIPS.get(exit_code)
    if tips is None:
        return None

    values = {"api_url": api_url or "$API_URL", "node_port": node_port or "$NODE_PORT"}
    lines = [f"[bold]{tips['title']}[/bold]", "", "[white]Try:[/white]"]
    lines += [f"  [cyan]{escape(check.format(**values))}[/cyan]" for check in tips["checks"]]

    paths = list(tips["paths"])
    if log_path:
        paths.append(str(log_path))
    if paths:
        lines += ["", "[white]Relevant files:[/white]"]
        lines += [f"  {escape(path)}" for path in paths]

    lines += ["", "[white]Common causes:[/white]"]
    lines += [f"  - {escape(cause)}" for cause in tips["causes"]]
    return "\n".join(lines)


def show_troubleshooting(
    exit_code: int,
    console: Console,
    api_url: Optional[str] = None,
    node_port: Optional[int] = None,
    log_path: Optional[str] = None,
) -> None:
    text = render_troubleshooting(exit_code, api_url, node_port, log_path)
    if text:
        console.print(Panel.fit(text, title="Troubleshooting", border_style="yellow"))
