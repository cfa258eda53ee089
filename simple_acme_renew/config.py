# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Loads the YAML configuration: the ACME environment, the Cloudflare account of every domain, the notification channels
and the renewal timings.

Example:
    acme_staging: true
    notifications:
      - slack: {webhook: "https://hooks.slack.com/services/..."}
      - telegram: {chat_id: "@channel", token: "..."}
    accounts:
      - domain: example.com
        contacts: [me@example.com]
        cloudflare_zone_id: "..."
        cloudflare_api_token: "..."
"""
import dataclasses
import logging
import pathlib
from typing import List, Optional

import validators
import yaml

from . import errors
from . import notify
from .acme_client import directory_url

logger = logging.getLogger(__name__)

CONFIG_PATHS = [
    "/etc/simple_acme_renew/config.yml",
    "~/.config/simple_acme_renew/config.yml",
    "config.yml",
]
DEFAULT_DATA_DIR = "certs"
INTEGER_SETTINGS = ("renewal_threshold_months", "max_attempts", "notification_retries")


@dataclasses.dataclass
class RenewalSettings:
    """Timings and retry budgets of the renewal workflow. Durations are in seconds."""
    renewal_threshold_months: int = 2
    max_attempts: int = 5
    poll_interval: float = 5
    challenge_validation_pause: float = 15
    order_retry_pause: float = 30
    finalize_timeout: float = 90
    notification_retries: int = 5
    notification_retry_pause: float = 5
    dns_propagation_timeout: float = 0
    dns_propagation_interval: float = 2
    nameservers: List[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RenewalSettings":
        """Builds settings from the `renewal` section, keeping defaults for anything not given."""
        data = data or {}
        if not isinstance(data, dict):
            raise errors.InvalidConfig("The 'renewal' section must be a mapping.")

        known = {field.name: field for field in dataclasses.fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise errors.InvalidConfig(f"Unknown renewal settings: {sorted(unknown)}")

        values = {}
        for name, value in data.items():
            if name == "nameservers":
                if not isinstance(value, list):
                    raise errors.InvalidConfig("Renewal setting 'nameservers' must be a list.")
                values[name] = [str(nameserver) for nameserver in value]
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise errors.InvalidConfig(f"Renewal setting '{name}' must be a non-negative number.")
            if name in INTEGER_SETTINGS and not isinstance(value, int):
                raise errors.InvalidConfig(f"Renewal setting '{name}' must be a whole number.")
            values[name] = value
        return cls(**values)


@dataclasses.dataclass
class DomainAccount:
    """The Cloudflare credentials and ACME contacts of one domain."""
    domain: str
    cloudflare_zone_id: str
    cloudflare_api_token: str = dataclasses.field(repr=False)
    contacts: List[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "DomainAccount":
        """
        Builds and validates an account entry.

        Raises:
            simple_acme_renew.errors.InvalidDomain: When the domain is not an RFC2181 compliant hostname.
            simple_acme_renew.errors.InvalidEmail: When a contact is not a valid email address.
            simple_acme_renew.errors.InvalidConfig: When a required key is missing.
        """
        if not isinstance(data, dict):
            raise errors.InvalidConfig("Each account must be a mapping.")

        for key in ("domain", "cloudflare_zone_id", "cloudflare_api_token"):
            if not data.get(key):
                raise errors.InvalidConfig(f"Account entry is missing '{key}'.")

        domain = str(data["domain"])
        if not validators.domain(domain):
            raise errors.InvalidDomain(f"Invalid domain name '{domain}'. Domain name must adhere to RFC2181.")

        contacts = data.get("contacts") or []
        if not isinstance(contacts, list):
            raise errors.InvalidConfig(f"Contacts of '{domain}' must be a list.")
        for contact in contacts:
            if not validators.email(str(contact)):
                raise errors.InvalidEmail(f"Value '{contact}' is not a valid email address.")

        return cls(
            domain=domain,
            cloudflare_zone_id=str(data["cloudflare_zone_id"]),
            cloudflare_api_token=str(data["cloudflare_api_token"]),
            contacts=[str(contact) for contact in contacts],
        )


def parse_notifier(entry) -> notify.Notifier:
    """
    Builds the notifier of one `notifications` entry, e.g. `{"slack": {"webhook": "..."}}`.

    Raises:
        simple_acme_renew.errors.InvalidConfig: When the entry names an unknown channel kind.
    """
    if not isinstance(entry, dict) or len(entry) != 1:
        raise errors.InvalidConfig(f"Notification entry {entry!r} must name exactly one channel.")

    kind, options = next(iter(entry.items()))
    options = options or {}
    if kind == "slack":
        return notify.SlackNotifier(webhook=str(options.get("webhook", "")))
    if kind == "telegram":
        return notify.TelegramNotifier(chat_id=str(options.get("chat_id", "")), token=str(options.get("token", "")))
    raise errors.InvalidConfig(f"Unknown notification channel '{kind}'. Options ['slack', 'telegram']")


@dataclasses.dataclass
class Config:
    """The whole configuration file."""
    accounts: List[DomainAccount]
    acme_staging: bool = True
    notifications: list = dataclasses.field(default_factory=list)
    data_dir: pathlib.Path = pathlib.Path(DEFAULT_DATA_DIR)
    verify_ssl: bool = True
    settings: RenewalSettings = dataclasses.field(default_factory=RenewalSettings)

    @classmethod
    def from_dict(cls, data: dict, base_dir=".") -> "Config":
        """
        Builds the configuration from parsed YAML.

        Args:
            data (dict): The parsed YAML document.
            base_dir (str): The directory relative `data_dir` values are resolved against.
        """
        if not isinstance(data, dict):
            raise errors.InvalidConfig("The configuration must be a mapping.")

        accounts = data.get("accounts") or []
        if not isinstance(accounts, list):
            raise errors.InvalidConfig("'accounts' must be a list.")
        notifications = data.get("notifications") or []
        if not isinstance(notifications, list):
            raise errors.InvalidConfig("'notifications' must be a list.")

        data_dir = pathlib.Path(data.get("data_dir") or DEFAULT_DATA_DIR).expanduser()
        if not data_dir.is_absolute():
            data_dir = pathlib.Path(base_dir).joinpath(data_dir)

        return cls(
            accounts=[DomainAccount.from_dict(account) for account in accounts],
            acme_staging=bool(data.get("acme_staging", True)),
            notifications=[parse_notifier(entry) for entry in notifications],
            data_dir=data_dir,
            verify_ssl=bool(data.get("verify_ssl", True)),
            settings=RenewalSettings.from_dict(data.get("renewal")),
        )

    def _account_of(self, domain: str) -> Optional[DomainAccount]:
        return next((account for account in self.accounts if account.domain == domain), None)

    def domains(self) -> list:
        """Returns the configured domains in file order."""
        return [account.domain for account in self.accounts]

    def contacts_of(self, domain: str) -> list:
        """Returns the contact emails of `domain`, or an empty list for unknown domains."""
        account = self._account_of(domain)
        return list(account.contacts) if account else []

    def zone_id_of(self, domain: str) -> str:
        """Returns the Cloudflare zone id of `domain`, or an empty string for unknown domains."""
        account = self._account_of(domain)
        return account.cloudflare_zone_id if account else ""

    def api_token_of(self, domain: str) -> str:
        """Returns the Cloudflare API token of `domain`, or an empty string for unknown domains."""
        account = self._account_of(domain)
        return account.cloudflare_api_token if account else ""

    def notifiers(self) -> list:
        """Returns the configured notification channels."""
        return list(self.notifications)

    def directory_url(self) -> str:
        """Returns the ACME directory URL of the configured environment."""
        return directory_url(self.acme_staging)


def find_config_file(paths: list = None) -> Optional[pathlib.Path]:
    """Returns the first existing configuration file of `paths` (defaults to `CONFIG_PATHS`)."""
    for path in paths if paths is not None else CONFIG_PATHS:
        candidate = pathlib.Path(path).expanduser()
        if candidate.is_file():
            return candidate
    return None


def load(path=None) -> Config:
    """
    Loads the configuration from `path`, or from the first existing default location.

    Raises:
        simple_acme_renew.errors.InvalidConfig: When no file is found or it cannot be read or parsed.
    """
    path = pathlib.Path(path).expanduser() if path else find_config_file()
    if path is None:
        raise errors.InvalidConfig(f"No configuration file found. Searched {CONFIG_PATHS}")

    logger.info("Loading the configuration from: %s", path)
    try:
        with open(path, "r", encoding="utf-8") as config_file:
            data = yaml.safe_load(config_file)
    except (OSError, yaml.YAMLError) as exc:
        raise errors.InvalidConfig(f"Unable to load the configuration at '{path}': {exc}") from exc

    return Config.from_dict(data or {}, base_dir=path.parent)
