import re
import logging
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)


class PinataConfigValidator:
    """
    Checks a Pinata provider config before any request is made with it.

    Each stage only runs when the previous ones found no errors: field
    presence and types first, then token and URL shapes, then timeout
    ranges, then (unless skipped) a call to Pinata's testAuthentication
    endpoint. Problems that make the provider unusable are errors;
    anything merely suspicious is a warning.
    """

    # header.payload.signature, each base64url
    JWT_PATTERN = re.compile(r'^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$')

    REQUIRED_STRINGS = ('jwt', 'api_url', 'gateway_url')
    TIMEOUT_FIELDS = ('probe_timeout', 'metadata_timeout', 'content_timeout')
    MAX_REASONABLE_TIMEOUT = 300

    def __init__(self, config):
        self.config = config
        self.errors = []
        self.warnings = []

    def validate(self, allow_errors=False, skip_api_check=False) -> bool:
        """
        Run every stage and return whether the config is usable.

        allow_errors makes the result True even with errors, so callers can
        collect the full report. skip_api_check avoids the network call.
        """
        self.errors, self.warnings = [], []

        stages = [self._check_fields, self._check_shapes, self._check_timeouts]
        if not skip_api_check:
            stages.append(self._check_token_accepted)

        for stage in stages:
            stage()
            if self.errors:
                break

        for message in self.errors:
            logger.error(f"Pinata config: {message}")
        for message in self.warnings:
            logger.warning(f"Pinata config: {message}")
        logger.debug(f"Pinata config checked with {len(self.errors)} error(s) and {len(self.warnings)} warning(s)")

        return allow_errors or not self.errors

    def _check_fields(self):
        if not isinstance(self.config, dict):
            self.errors.append("Config must be a dictionary")
            return

        for name in self.REQUIRED_STRINGS:
            if name not in self.config:
                self.errors.append(f"Missing required field: '{name}'")
            elif self.config[name] in (None, ''):
                self.errors.append(f"Field '{name}' cannot be empty")
            elif not isinstance(self.config[name], str):
                self.errors.append(f"Field '{name}' must be str, got {type(self.config[name]).__name__}")

        for name in self.TIMEOUT_FIELDS:
            value = self.config.get(name)
            if value is not None and not isinstance(value, (int, float)):
                self.errors.append(f"Optional field '{name}' must be a number, got {type(value).__name__}")

    def _check_shapes(self):
        if not self.JWT_PATTERN.match(self.config['jwt']):
            self.warnings.append(
                "JWT is not in header.payload.signature form; it may be a placeholder or mistyped."
            )

        for name in ('api_url', 'gateway_url'):
            parsed = urlparse(self.config[name])
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                self.errors.append(f"'{name}' must be an absolute http(s) URL")
            elif parsed.scheme == 'http':
                self.warnings.append(f"'{name}' uses plain http")

    def _check_timeouts(self):
        present = {name: self.config[name] for name in self.TIMEOUT_FIELDS if self.config.get(name) is not None}
        for name, seconds in present.items():
            if seconds <= 0:
                self.errors.append(f"'{name}' must be positive, got {seconds}")
            elif seconds > self.MAX_REASONABLE_TIMEOUT:
                self.warnings.append(f"'{name}' ({seconds}s) is unusually long; requests may hang that long")

    def _check_token_accepted(self):
        """Ask Pinata whether it accepts the JWT."""
        url = f"{self.config['api_url'].rstrip('/')}/data/testAuthentication"
        try:
            with httpx.Client(timeout=self.config.get('probe_timeout', 5)) as client:
                response = client.get(url, headers={"Authorization": f"Bearer {self.config['jwt']}"})
        except httpx.RequestError as e:
            self.errors.append(f"Failed to validate Pinata JWT: {e}")
            return

        if response.status_code == 401:
            self.errors.append("Pinata JWT is invalid or unauthorized.")
        elif response.status_code != 200:
            self.errors.append(f"Pinata answered the JWT check with HTTP {response.status_code}")

    def get_errors(self):
        return list(self.errors)

    def get_warnings(self):
        return list(self.warnings)

    def get_validation_report(self):
        """Human readable summary, as printed by check_storage_provider."""
        if not self.errors and not self.warnings:
            return "[+] Configuration is valid"

        lines = []
        if self.errors:
            lines.append(f"[x] {len(self.errors)} error(s) found:")
            lines.extend(f"  - {message}" for message in self.errors)
        if self.warnings:
            lines.append(f"[!] {len(self.warnings)} warning(s):")
            lines.extend(f"  - {message}" for message in self.warnings)
        return "\n".join(lines)
