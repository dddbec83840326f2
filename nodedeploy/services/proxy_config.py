"""
Proxy engine (Xray-core) configuration builder.

Produces one protocol-specific inbound plus the loopback stats API inbound
the reporting agent reads traffic counters from.
"""

import json
from typing import Any, Dict, Optional

from nodedeploy.constants import XRAY_API_HOST, XRAY_API_PORT
from nodedeploy.exceptions import InstallError
from nodedeploy.models.deployment import Protocol

DEFAULT_SHADOWSOCKS_METHOD = "aes-256-gcm"

# protocol_config keys that land in streamSettings rather than settings
STREAM_OVERRIDES = ("network", "security")
SETTINGS_OVERRIDES = ("method", "flow", "path", "sni")


def _stream(network: str = "tcp", security: str = "none") -> Dict[str, Any]:
    return {"network": network, "security": security}


def build_inbound(
    protocol: Protocol, port: int, secret: str, protocol_config: Optional[Dict] = None
) -> Dict[str, Any]:
    """
    Build the client-facing inbound for ``protocol``.

    Args:
        protocol: Proxy protocol
        port: Listening port
        secret: Node secret used as client id or password
        protocol_config: Operator overrides (network, security, method, flow, path, sni)

    Returns:
        Inbound dict ready for the "inbounds" list
    """
    overrides = dict(protocol_config or {})

    if protocol == Protocol.VLESS:
        client = {"id": secret}
        if overrides.get("flow"):
            client["flow"] = overrides["flow"]
        settings = {"clients": [client], "decryption": "none"}
        stream = _stream()
    elif protocol == Protocol.VMESS:
        settings = {"clients": [{"id": secret, "alterId": 0}]}
        stream = _stream()
    elif protocol == Protocol.TROJAN:
        settings = {"clients": [{"password": secret}], "fallbacks": [{"dest": 80}]}
        stream = _stream()
    elif protocol == Protocol.SHADOWSOCKS:
        settings = {
            "method": overrides.get("method") or DEFAULT_SHADOWSOCKS_METHOD,
            "password": secret,
            "network": "tcp,udp",
        }
        stream = None
    elif protocol == Protocol.HYSTERIA2:
        settings = {"password": secret}
        stream = {"network": "udp", "auth": {"type": "password", "password": secret}}
    else:
        raise InstallError(f"Unsupported protocol: {protocol}")

    if stream is not None:
        for key in STREAM_OVERRIDES:
            if overrides.get(key):
                stream[key] = overrides[key]
        if overrides.get("sni"):
            stream.setdefault("tlsSettings", {})["serverName"] = overrides["sni"]
        if overrides.get("path"):
            network = stream.get("network", "tcp")
            stream[f"{network}Settings"] = {"path": overrides["path"]}

    inbound = {
        "port": port,
        "protocol": protocol.value,
        "tag": f"{protocol.value}-in",
        "settings": settings,
    }
    if stream is not None:
        inbound["streamSettings"] = stream
    return inbound


def build_proxy_config(
    protocol: Protocol, port: int, secret: str, protocol_config: Optional[Dict] = None
) -> Dict[str, Any]:
    """Full Xray configuration document for one node."""
    return {
        "log": {"loglevel": "warning"},
        "api": {"tag": "api", "services": ["HandlerService", "StatsService"]},
        "stats": {},
        "policy": {
            "levels": {"0": {"statsUserUplink": True, "statsUserDownlink": True}},
            "system": {
                "statsInboundUplink": True,
                "statsInboundDownlink": True,
            },
        },
        "inbounds": [
            {
                "listen": XRAY_API_HOST,
                "port": XRAY_API_PORT,
                "protocol": "dokodemo-door",
                "settings": {"address": XRAY_API_HOST},
                "tag": "api",
            },
            build_inbound(protocol, port, secret, protocol_config),
        ],
        "outbounds": [
            {"protocol": "freedom", "tag": "direct"},
            {"protocol": "blackhole", "tag": "blocked"},
        ],
        "routing": {
            "rules": [{"type": "field", "inboundTag": ["api"], "outboundTag": "api"}]
        },
    }


def serialize_proxy_config(document: Dict[str, Any]) -> str:
    """Serialize and re-parse so only valid JSON ever reaches disk."""
    text = json.dumps(document, indent=2)
    try:
        json.loads(text)
    except ValueError as e:
        raise InstallError("Generated proxy configuration is not valid JSON", context=str(e))
    return text + "\n"
