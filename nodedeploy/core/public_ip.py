"""Public IPv4 detection through external echo services."""

import re
import time
from typing import Callable, List, Optional

import requests

from nodedeploy.constants import (
    IP_DETECTION_SERVICES,
    IP_MAX_ATTEMPTS,
    IP_RETRY_DELAY,
    IP_TIMEOUT,
)
from nodedeploy.exceptions import NetworkError
from nodedeploy.logger import DeployLogger
from nodedeploy.utils.retry import retry_call

IPV4_PATTERN = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


def is_valid_ipv4(value: str) -> bool:
    match = IPV4_PATTERN.match(value)
    return bool(match) and all(int(octet) <= 255 for octet in match.groups())


class PublicIPDetector:
    """Asks each echo service in turn until one returns a valid IPv4 address."""

    def __init__(
        self,
        logger: Optional[DeployLogger] = None,
        session: Optional[requests.Session] = None,
        services: Optional[List[str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger
        self.session = session or requests.Session()
        self.services = list(services or IP_DETECTION_SERVICES)
        self.sleep = sleep

    def _log(self, message: str, level: str = "INFO") -> None:
        if self.logger:
            self.logger.log(message, level)

    def _query(self, service: str) -> str:
        def attempt(number: int) -> str:
            try:
                response = self.session.get(service, timeout=IP_TIMEOUT)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise NetworkError(f"{service} unreachable", context=str(e), retryable=True)

            candidate = response.text.strip()
            if not is_valid_ipv4(candidate):
                raise NetworkError(
                    f"{service} returned an invalid address",
                    context=candidate[:60],
                    retryable=True,
                )
            return candidate

        return retry_call(
            attempt,
            attempts=IP_MAX_ATTEMPTS,
            delay=IP_RETRY_DELAY,
            sleep=self.sleep,
        )

    def detect(self) -> str:
        """
        Return this host's public IPv4 address.

        Raises:
            NetworkError: If no service produced a valid address
        """
        for service in self.services:
            self._log(f"Detecting public IP via {service}")
            try:
                ip = self._query(service)
            except NetworkError as e:
                self._log(f"{e.message}, trying next service", "WARNING")
                continue
            self._log(f"Detected public IP: {ip}")
            return ip

        raise NetworkError(
            "Failed to detect public IP address",
            context="Specify the address manually with --node-host",
        )
