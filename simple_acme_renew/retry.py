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
"""Bounded retries with a fixed pause between attempts."""
import time

from . import errors


def retry_call(
        operation,
        delay: float,
        tries: int,
        retry_on: tuple = (Exception,),
        sleep=time.sleep,
        on_retry=None
):
    """
    Calls `operation` until it returns or until `tries` attempts have failed.

    Args:
        operation (callable): A function taking no arguments.
        delay (float): The amount of time (in seconds) to pause between attempts. There is no pause after the
            last attempt.
        tries (int): The maximum number of attempts. Values below 1 are treated as 1.
        retry_on (tuple): Exception classes that are considered transient. Any other exception propagates
            immediately without further attempts.
        sleep (callable): Function used to pause between attempts.
        on_retry (callable): Optional callback receiving `(attempt, error)` after each failed attempt that
            will be retried.

    Returns:
        The return value of the first successful `operation` call.

    Raises:
        simple_acme_renew.errors.RetriesExhausted: When every attempt failed with a retryable error. The last
            error is available as the `last_error` attribute and as the exception's `__cause__`.
    """
    tries = max(tries, 1)

    for attempt in range(1, tries + 1):
        try:
            return operation()
        except retry_on as exc:
            if attempt >= tries:
                msg = f"Did not succeed within {tries} attempts: {exc}"
                raise errors.RetriesExhausted(msg, attempts=attempt, last_error=exc) from exc
            if on_retry:
                on_retry(attempt, exc)
            sleep(delay)

    # Unreachable, the loop either returns or raises
    raise errors.RetriesExhausted(f"Did not succeed within {tries} attempts", attempts=tries)
