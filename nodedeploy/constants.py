"""
nodedeploy Constants

Centralized constants for paths, defaults, retry budgets and exit codes.
"""

# Exit Codes
EXIT_SUCCESS = 0
EXIT_PARAMETER_ERROR = 1
EXIT_ENVIRONMENT_ERROR = 2
EXIT_NETWORK_ERROR = 3
EXIT_API_ERROR = 4
EXIT_INSTALL_ERROR = 5
EXIT_SERVICE_ERROR = 6
EXIT_INTERRUPTED = 130

# Node Defaults
DEFAULT_NODE_PORT = 443
DEFAULT_NODE_PROTOCOL = "vless"
AUTO_HOST = "auto"

# Environment Variables (CLI flag name -> variable name)
PARAMETER_ENV_VARS = {
    "api_url": "API_URL",
    "admin_token": "ADMIN_TOKEN",
    "node_name": "NODE_NAME",
    "node_host": "NODE_HOST",
    "node_port": "NODE_PORT",
    "node_protocol": "NODE_PROTOCOL",
    "node_config": "NODE_CONFIG",
}
ROOT_ENV_VAR = "NODEDEPLOY_ROOT"
AGENT_RELEASE_ENV_VAR = "NODEDEPLOY_AGENT_RELEASE_URL"

# System Paths (absolute, prefixed by NodePaths.root)
AGENT_BINARY_PATH = "/usr/local/bin/node-agent"
PROXY_BINARY_PATH = "/usr/local/bin/xray"
AGENT_CONFIG_DIR = "/etc/node-agent"
AGENT_CONFIG_FILE = "/etc/node-agent/config.env"
PROXY_CONFIG_DIR = "/etc/xray"
PROXY_CONFIG_FILE = "/etc/xray/config.json"
SERVICE_UNIT_FILE = "/etc/systemd/system/node-agent.service"
BACKUP_DIR = "/var/backups/node-deployment"
LOG_DIR = "/var/log/nodedeploy"
LOCK_FILE = "/run/nodedeploy.lock"
TEMP_DIR = "/tmp"
OS_RELEASE_FILE = "/etc/os-release"
BINARY_SEARCH_DIRS = ["/usr/local/bin", "/usr/bin", "/bin", "/usr/local/sbin", "/usr/sbin"]

# Service & Binary Names
AGENT_SERVICE = "node-agent"
PROXY_SERVICE = "xray"
AGENT_BINARY = "node-agent"
PROXY_BINARY = "xray"

# Release Sources
XRAY_INSTALL_SCRIPT_URL = (
    "https://github.com/XTLS/Xray-install/raw/main/install-release.sh"
)
AGENT_RELEASE_URL = (
    "https://github.com/your-org/vpn-platform/releases/latest/download"
)
SUPPORTED_ARCHITECTURES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}
MIN_BINARY_SIZE = 1000

# Agent Configuration
XRAY_API_HOST = "127.0.0.1"
XRAY_API_PORT = 10085
TRAFFIC_REPORT_INTERVAL = 30
HEARTBEAT_INTERVAL = 60
AGENT_LOG_LEVEL = "info"

# Control-Plane API
NODES_ENDPOINT = "/api/admin/nodes"
API_TIMEOUT = 30
API_MAX_ATTEMPTS = 3
API_RETRY_DELAY = 5
API_HEAD_TIMEOUT = 5
RETRYABLE_STATUS_CODES = [500, 502, 503, 504]

# Downloads
DOWNLOAD_TIMEOUT = 60
DOWNLOAD_MAX_ATTEMPTS = 3
DOWNLOAD_RETRY_DELAY = 3
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Public IP Detection
IP_DETECTION_SERVICES = [
    "https://api.ipify.org",
    "https://icanhazip.com",
    "https://ifconfig.me",
]
IP_MAX_ATTEMPTS = 2
IP_TIMEOUT = 5
IP_RETRY_DELAY = 1

# Service Readiness
SERVICE_START_TIMEOUT = 5
SERVICE_POLL_INTERVAL = 1
JOURNAL_LINES = 20
JOURNAL_ERROR_MARKERS = ["error", "fatal", "panic"]

# Secrets
SECRET_LENGTH = 32
SECRET_MASK_VISIBLE_CHARS = 8
SECRET_MASK_PLACEHOLDER = "***"

# Environment Probe
REQUIRED_TOOLS = ["curl", "jq", "systemctl", "openssl"]
TOOL_PACKAGES = {"systemctl": "systemd"}
OS_FAMILIES = {
    "ubuntu": "ubuntu",
    "debian": "debian",
    "centos": "centos",
    "rhel": "centos",
}

# File Permissions
SECRET_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644
EXECUTABLE_MODE = 0o755
ACCEPTED_SECRET_MODES = [0o600, 0o400]

# Backups
BACKUP_PREFIX = "backup_"
BACKUP_MANIFEST = "manifest.json"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"
LOG_TIME_FORMAT = "%H-%M-%S"

# Batch Deployment
BATCH_TARGET_LOCAL = "local"
BATCH_TARGET_REMOTE = "remote"
BATCH_TARGETS = [BATCH_TARGET_LOCAL, BATCH_TARGET_REMOTE]
BATCH_CONFIG_FORBIDDEN_MODE = 0o044
