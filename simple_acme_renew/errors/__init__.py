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
"""Custom exception classes for simple_acme_renew."""


class InvalidConfig(Exception):
    """Error occurs when the configuration file is missing, unreadable or malformed."""
    def __init__(self, message: str) -> None:
        self.message = message


class InvalidDomain(Exception):
    """Error occurs when a configured domain is not an RFC2181 compliant hostname."""
    def __init__(self, message: str) -> None:
        self.message = message


class InvalidEmail(Exception):
    """Error occurs when a configured contact is not a valid email address."""
    def __init__(self, message: str) -> None:
        self.message = message


class InvalidPrivateKey(Exception):
    """Error occurs when an account or domain key file exists but cannot be loaded."""
    def __init__(self, message: str) -> None:
        self.message = message


class InvalidCertificate(Exception):
    """Error occurs when an existing certificate chain file cannot be parsed."""
    def __init__(self, message: str) -> None:
        self.message = message


class DnsProviderError(Exception):
    """Error occurs when the DNS provider API rejects or fails a request."""
    def __init__(self, message: str) -> None:
        self.message = message


class OrderError(Exception):
    """Error occurs when an ACME order could not be driven to the CSR-ready state."""
    def __init__(self, message: str) -> None:
        self.message = message


class ValidationFailed(OrderError):
    """Error occurs when the ACME server reports an `invalid` authorization status."""


class OrderAttemptsExceeded(OrderError):
    """Error occurs when an order is not confirmed within the maximum number of polling attempts."""


class RetriesExhausted(Exception):
    """Error occurs when a retried operation fails on every allowed attempt."""
    def __init__(self, message: str, attempts: int = 0, last_error: Exception = None) -> None:
        super().__init__(message)
        self.message = message
        self.attempts = attempts
        self.last_error = last_error


class RenewalFailed(Exception):
    """Error occurs when a certificate renewal could not be completed."""
    def __init__(self, message: str) -> None:
        self.message = message


class NotificationError(Exception):
    """Error occurs when a notification channel fails to deliver a message."""
    def __init__(self, message: str) -> None:
        self.message = message
