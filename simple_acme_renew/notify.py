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
"""Best-effort delivery of renewal outcomes to Slack and Telegram."""
import logging
import time

import requests

from . import errors
from .retry import retry_call

logger = logging.getLogger(__name__)

NOTIFIER_NAME = "simple_acme_renew"
SLACK_SUCCESS_ICON = ":white_check_mark:"
SLACK_FAILURE_ICON = ":error:"
SLACK_SUCCESS_COLOR = "#00ff00"
SLACK_FAILURE_COLOR = "#ff1111"
TELEGRAM_API_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30


class Notifier:
    """A notification channel."""

    name = "notifier"

    def is_configured(self) -> bool:
        """Whether the channel has the settings it needs to send anything."""
        return True

    def notify(self, message: str, failure: bool = False) -> None:
        """
        Sends `message` through the channel.

        Raises:
            simple_acme_renew.errors.NotificationError: When the message could not be delivered.
        """
        raise NotImplementedError


def _post(url: str, timeout: int = DEFAULT_TIMEOUT, **kwargs) -> requests.Response:
    """POSTs to a notification endpoint, turning any HTTP failure into a NotificationError."""
    try:
        response = requests.post(url, timeout=timeout, **kwargs)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise errors.NotificationError(f"Notification request failed: {exc}") from exc
    return response


class SlackNotifier(Notifier):
    """Posts to a Slack incoming webhook."""

    name = "slack"

    def __init__(self, webhook: str) -> None:
        self.webhook = webhook

    def is_configured(self) -> bool:
        return bool(self.webhook)

    def payload(self, message: str, failure: bool = False) -> dict:
        """Builds the webhook payload: one attachment colored after the outcome."""
        return {
            "username": NOTIFIER_NAME,
            "icon_emoji": SLACK_FAILURE_ICON if failure else SLACK_SUCCESS_ICON,
            "attachments": [{
                "text": message,
                "fallback": message,
                "color": SLACK_FAILURE_COLOR if failure else SLACK_SUCCESS_COLOR,
            }],
        }

    def notify(self, message: str, failure: bool = False) -> None:
        logger.debug("Sending Slack notification: %s", message)
        _post(self.webhook, json=self.payload(message, failure))


class TelegramNotifier(Notifier):
    """Sends a message to a chat through a Telegram bot."""

    name = "telegram"

    def __init__(self, chat_id: str, token: str) -> None:
        self.chat_id = chat_id
        self.token = token

    def is_configured(self) -> bool:
        return bool(self.chat_id and self.token)

    def notify(self, message: str, failure: bool = False) -> None:
        icon = "❌" if failure else "✅"
        logger.debug("Sending Telegram notification to %s: %s", self.chat_id, message)
        response = _post(
            f"{TELEGRAM_API_URL}/bot{self.token}/sendMessage",
            json={"chat_id": self.chat_id, "text": f"{icon} {NOTIFIER_NAME}: {message}"},
        )
        try:
            delivered = response.json().get("ok", False)
        except ValueError:
            delivered = False
        if not delivered:
            raise errors.NotificationError(f"Telegram did not accept the message: {response.text}")


def renewal_message(domain: str, wildcard: bool, error: Exception = None) -> str:
    """Formats the notification text for a renewal outcome."""
    name = f"*.{domain}" if wildcard else domain
    if error is None:
        return f"Certificate for {name} renewed."
    return f"Certificate renewal for {name} failed: {error}"


class NotificationDispatcher:
    """Fans a message out to every configured channel. Delivery failures never propagate."""

    def __init__(self, notifiers: list = None, retries: int = 5, pause: float = 5, sleep=time.sleep) -> None:
        """
        Args:
            notifiers (list): The `Notifier` channels to deliver to.
            retries (int): The maximum number of delivery attempts per channel.
            pause (float): The amount of time (in seconds) between delivery attempts.
            sleep (callable): Function used to pause between attempts.
        """
        self.notifiers = notifiers if notifiers else []
        self.retries = retries
        self.pause = pause
        self.sleep = sleep

    def dispatch(self, message: str, failure: bool = False) -> int:
        """
        Delivers `message` to every channel, retrying each one a bounded number of times.

        Returns:
            int: The number of channels that accepted the message.
        """
        delivered = 0

        for notifier in self.notifiers:
            if not notifier.is_configured():
                logger.warning("Notifier '%s' is not configured. Notifications will not be sent.", notifier.name)
                continue

            def on_retry(attempt, exc, notifier=notifier):
                logger.info("Notification via '%s' failed (attempt %s): %s", notifier.name, attempt, exc)

            try:
                retry_call(
                    lambda notifier=notifier: notifier.notify(message, failure),
                    delay=self.pause,
                    tries=self.retries,
                    retry_on=(errors.NotificationError,),
                    sleep=self.sleep,
                    on_retry=on_retry,
                )
                delivered += 1
            except errors.RetriesExhausted as exc:
                logger.warning("Error sending notification via '%s': %s", notifier.name, exc.message)

        return delivered

    def notify_success(self, domain: str, wildcard: bool = False) -> int:
        """Sends the success message of a renewal."""
        return self.dispatch(renewal_message(domain, wildcard))

    def notify_failure(self, domain: str, wildcard: bool, error: Exception) -> int:
        """Sends the failure message of a renewal."""
        return self.dispatch(renewal_message(domain, wildcard, error), failure=True)
