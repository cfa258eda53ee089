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
The per-domain renewal workflow: check the existing certificate, order and validate a new one through DNS-01,
archive the previous chain, write the new one and report the outcome.
"""
import datetime
import logging
import os
import shutil
import time

import requests
from acme import errors as acme_errors
from acme import messages

from . import errors
from . import expiry
from . import keystore
from .acme_client import Directory
from .challenge import DnsChallengeCoordinator
from .cloudflare import CloudflareClient
from .notify import NotificationDispatcher
from .order import OrderStateMachine
from .retry import retry_call

logger = logging.getLogger(__name__)

# Failures talking to the CA or the DNS provider that may go away on a fresh order
TRANSIENT_ERRORS = (errors.DnsProviderError, acme_errors.Error, messages.Error, requests.RequestException)


def certificate_name(domain: str, wildcard: bool = False) -> str:
    """Returns the name a certificate is ordered for, e.g. `example.com` or `*.example.com`."""
    return f"*.{domain}" if wildcard else domain


def archive_path(chain_path, day: datetime.date):
    """
    Returns the date suffixed archive path of a chain file, e.g. `chained.pem-2024-05-01`. When that archive already
    exists a counter is appended (`chained.pem-2024-05-01.1`, `.2`, ...) so earlier archives are never overwritten.
    """
    archive = chain_path.with_name(f"{chain_path.name}-{day.isoformat()}")
    counter = 1
    while archive.exists():
        archive = chain_path.with_name(f"{chain_path.name}-{day.isoformat()}.{counter}")
        counter += 1
    return archive


class Renewer:
    """Renews the apex and wildcard certificates of the configured domains, one at a time."""
    # pylint: disable=too-many-arguments

    def __init__(
            self,
            config,
            directory_factory=None,
            provider_factory=None,
            dispatcher: NotificationDispatcher = None,
            sleep=time.sleep,
            clock=None
    ) -> None:
        """
        Args:
            config (simple_acme_renew.config.Config): The loaded configuration.
            directory_factory (callable): Builds the ACME directory from its URL. Defaults to
                `simple_acme_renew.acme_client.Directory`.
            provider_factory (callable): Builds the DNS provider client of a domain. Defaults to a
                `CloudflareClient` using the domain's zone id and API token.
            dispatcher (simple_acme_renew.notify.NotificationDispatcher): Delivers renewal outcomes. Defaults to the
                configured notification channels.
            sleep (callable): Function used for every pause of the workflow.
            clock (callable): Returns the current timezone aware time. Defaults to the current UTC time.
        """
        self.config = config
        self.settings = config.settings
        self.sleep = sleep
        self.clock = clock if clock else lambda: datetime.datetime.now(datetime.timezone.utc)
        self.directory_factory = directory_factory if directory_factory else self._default_directory
        self.provider_factory = provider_factory if provider_factory else self._default_provider
        self.dispatcher = dispatcher if dispatcher else NotificationDispatcher(
            config.notifiers(),
            retries=self.settings.notification_retries,
            pause=self.settings.notification_retry_pause,
            sleep=sleep
        )

    def _default_directory(self, url: str) -> Directory:
        return Directory(url, verify_ssl=self.config.verify_ssl, sleep=self.sleep)

    def _default_provider(self, domain: str) -> CloudflareClient:
        return CloudflareClient(self.config.zone_id_of(domain), self.config.api_token_of(domain))

    def get_cert(self, domain: str) -> bool:
        """Renews the certificate of `domain` itself."""
        return self.renew(domain, wildcard=False)

    def get_cert_wildcard(self, domain: str) -> bool:
        """Renews the `*.domain` certificate."""
        return self.renew(domain, wildcard=True)

    def renew(self, domain: str, wildcard: bool = False) -> bool:
        """
        Renews one certificate when its expiry is within the renewal threshold.

        Args:
            domain (str): The configured domain, without any wildcard prefix.
            wildcard (bool): Renew the `*.domain` certificate instead of the apex one.

        Returns:
            bool: `True` when a new certificate was written, `False` when the existing one is still fresh.

        Raises:
            simple_acme_renew.errors.RenewalFailed: When no order could be established within the attempt budget or
                the certificate could not be issued.
            simple_acme_renew.errors.InvalidPrivateKey: When an existing key file is corrupted.
            simple_acme_renew.errors.InvalidCertificate: When the existing chain file is corrupted.
        """
        name = certificate_name(domain, wildcard)

        def on_retry(attempt, exc):
            logger.warning(
                "Waiting %ss to retry %s (attempts: %s). Problem: %s",
                self.settings.order_retry_pause, name, attempt, exc
            )

        try:
            established = retry_call(
                lambda: self._establish_order(domain, wildcard),
                delay=self.settings.order_retry_pause,
                tries=self.settings.max_attempts,
                retry_on=(errors.OrderError,),
                sleep=self.sleep,
                on_retry=on_retry
            )
        except errors.RetriesExhausted as exc:
            msg = (f"Reached max retry attempts: {self.settings.max_attempts} for {name}. "
                   f"Check the API credentials. Last problem: {exc.last_error}")
            logger.error(msg)
            raise errors.RenewalFailed(msg) from exc

        if established is None:
            return False

        finalizable, paths = established
        self._issue(finalizable, paths, domain, wildcard)
        return True

    def _establish_order(self, domain: str, wildcard: bool):
        """
        Runs one attempt of the workflow up to a CSR-ready order.

        Returns:
            tuple: The finalizable order and the domain paths, or `None` when no renewal is needed.

        Raises:
            simple_acme_renew.errors.OrderError: When the order could not be established. These are retried.
        """
        url = self.config.directory_url()
        logger.info("Using ACME directory: %s", url)
        directory = self.directory_factory(url)

        contacts = [f"mailto:{contact}" for contact in self.config.contacts_of(domain)]
        account = keystore.load_or_create_account(directory, contacts, self.config.data_dir)

        paths = keystore.domain_paths(self.config.data_dir, domain, wildcard)
        domain_key = keystore.load_or_generate_domain_key(paths)

        decision = expiry.check_expiry(
            paths.chain, domain_key, self.settings.renewal_threshold_months, now=self.clock()
        )
        if decision is expiry.ExpiryDecision.RENEWAL_NOT_NEEDED:
            return None

        name = certificate_name(domain, wildcard)
        try:
            order = account.new_order(name, [], domain_key)
            coordinator = DnsChallengeCoordinator(self.provider_factory(domain))
            finalizable = OrderStateMachine(order, coordinator, domain, self.settings, sleep=self.sleep).run()
        except TRANSIENT_ERRORS as exc:
            raise errors.OrderError(f"Unable to establish an order for {name}: {exc}") from exc

        return finalizable, paths

    def _issue(self, finalizable, paths: keystore.DomainPaths, domain: str, wildcard: bool) -> None:
        """Finalizes the order, archives the previous chain and writes the new one."""
        name = certificate_name(domain, wildcard)

        try:
            cert_order = finalizable.finalize(self.settings.finalize_timeout)
        except TRANSIENT_ERRORS as exc:
            msg = f"Certificate for {name} was not issued: {exc}"
            logger.error(msg)
            raise errors.RenewalFailed(msg) from exc

        if paths.chain.exists():
            archive = archive_path(paths.chain, self.clock().astimezone().date())
            logger.info("Making a copy of the previous certificate to: %s", archive)
            shutil.copy2(paths.chain, archive)

        chain = cert_order.download_certificate()
        temp_path = paths.chain.with_name(f"{paths.chain.name}.tmp")
        temp_path.write_text(chain, encoding="utf-8")
        os.replace(temp_path, paths.chain)
        logger.info("Certificate for %s written to %s", name, paths.chain)

        self.dispatcher.notify_success(domain, wildcard)
        logger.info("Ready")
