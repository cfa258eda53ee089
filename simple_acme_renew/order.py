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
Drives a single ACME order from creation to the point where the CSR can be submitted. The ACME server and the DNS
provider are both eventually consistent, so the order is polled with a fixed pause and a bounded number of attempts.
"""
import enum
import logging
import time

from . import errors
from . import tools
from .challenge import challenge_name
from .config import RenewalSettings

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_INVALID = "invalid"


class OrderState(enum.Enum):
    """States of an order as seen by this client."""
    CREATED = "created"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    CHALLENGE_PENDING = "challenge_pending"
    CHALLENGE_SUBMITTED = "challenge_submitted"
    VALIDATED = "validated"
    CSR_READY = "csr_ready"
    FAILED = "failed"


class OrderStateMachine:
    """
    Polls an order until all of its authorizations are valid. A DNS-01 challenge is answered when required; its TXT
    record is always removed again once the CA has been asked to validate it, whatever the outcome.
    """
    # pylint: disable=too-many-arguments

    def __init__(self, order, coordinator, domain: str, settings: RenewalSettings = None, sleep=time.sleep) -> None:
        """
        Args:
            order (simple_acme_renew.acme_client.Order): The freshly created order.
            coordinator (simple_acme_renew.challenge.DnsChallengeCoordinator): Manages the challenge TXT record.
            domain (str): The domain being validated, without any wildcard prefix.
            settings (simple_acme_renew.config.RenewalSettings): Poll pauses and the attempt budget.
            sleep (callable): Function used to pause between polls.
        """
        self.order = order
        self.coordinator = coordinator
        self.domain = domain
        self.settings = settings if settings else RenewalSettings()
        self.sleep = sleep
        self.state = OrderState.CREATED
        self.attempts = 0

    def _transition(self, state: OrderState) -> None:
        logger.debug("Order for %s: %s -> %s", self.domain, self.state.value, state.value)
        self.state = state

    def _fail(self, error: errors.OrderError) -> errors.OrderError:
        self._transition(OrderState.FAILED)
        logger.error("Order for %s failed after %s attempt(s): %s", self.domain, self.attempts, error.message)
        return error

    def run(self):
        """
        Polls the order until it is ready for CSR submission.

        Returns:
            simple_acme_renew.acme_client.FinalizableOrder: The order ready to be finalized.

        Raises:
            simple_acme_renew.errors.OrderAttemptsExceeded: When the order is not confirmed within `max_attempts`.
            simple_acme_renew.errors.ValidationFailed: When the CA reports the authorization as `invalid`.
        """
        status = ""
        self.attempts = 1

        while True:
            finalizable = self.order.confirm_validations()
            if finalizable is not None:
                logger.info("Order confirmed for %s.", self.domain)
                self._transition(OrderState.CSR_READY)
                return finalizable

            if self.attempts > self.settings.max_attempts:
                msg = (f"Failed to order a certificate for {self.domain} within the "
                       f"{self.settings.max_attempts} max confirmation attempts.")
                raise self._fail(errors.OrderAttemptsExceeded(msg))

            if status == STATUS_PENDING:
                status = self._await_authorization()
            else:
                status = self._authorize()

            logger.info("Order status for %s: %s (attempt %s)", self.domain, status, self.attempts)
            if status == STATUS_INVALID:
                msg = f"Authorization for {self.domain} is invalid. Something went wrong with the DNS-01 challenge."
                raise self._fail(errors.ValidationFailed(msg))

            self.attempts += 1

    def _await_authorization(self) -> str:
        """Waits for the CA to notice the published proof, without answering the challenge again."""
        self._transition(OrderState.AWAITING_AUTHORIZATION)
        logger.info("Awaiting authorization for %s", self.domain)
        self.sleep(self.settings.poll_interval)
        self.order.refresh()
        return self.order.authorizations()[0].status

    def _authorize(self) -> str:
        """Answers the DNS-01 challenge of the order's authorization when one is required."""
        # A DNS-01 order for a single name carries exactly one authorization
        authorization = self.order.authorizations()[0]

        if not authorization.needs_challenge():
            logger.info("Challenge not required for %s.", self.domain)
            self.order.refresh()
            return authorization.status

        challenge = authorization.dns_challenge()
        if challenge is None:
            logger.error("No DNS-01 challenge offered for %s.", self.domain)
            return authorization.status

        self._transition(OrderState.CHALLENGE_PENDING)
        logger.info("Pending the domain registration for %s", self.domain)
        logger.debug("Deleting any previous DNS entries for domain: %s", self.domain)
        self.coordinator.delete_challenge_records(self.domain)

        try:
            proof = challenge.proof()
            try:
                self.coordinator.create_challenge_record(self.domain, proof)
            except errors.DnsProviderError as exc:
                logger.error("Failed to create DNS TXT record for %s: %s", self.domain, exc.message)
            else:
                self._wait_for_propagation(proof)

            self.order.refresh()
            self._transition(OrderState.CHALLENGE_SUBMITTED)
            try:
                challenge.validate(self.settings.challenge_validation_pause)
                logger.info("Challenge validated for %s.", self.domain)
            except errors.OrderError as exc:
                logger.debug("Failed validation for %s: %s", self.domain, exc.message)
            self.order.refresh()
        finally:
            self.coordinator.delete_challenge_records(self.domain)

        self._transition(OrderState.VALIDATED)
        return authorization.status

    def _wait_for_propagation(self, proof: str) -> None:
        """Optionally waits until the proof is visible in DNS before asking the CA to look for it."""
        if self.settings.dns_propagation_timeout <= 0:
            return
        tools.wait_for_txt(
            challenge_name(self.domain).rstrip("."),
            proof,
            timeout=self.settings.dns_propagation_timeout,
            interval=self.settings.dns_propagation_interval,
            nameservers=self.settings.nameservers,
            sleep=self.sleep
        )
