"""
Secret Masking
==============
Scrubs registered secret values from captured stage output and log records.

Secrets are registered by the registry session when a credential is read
and unregistered when the session closes. Masking is a plain substring
replacement, longest secret first so overlapping values are fully hidden.
"""
import logging
import threading
from collections import Counter

MASK = "********"

# Values shorter than this are not masked (would shred ordinary output)
_MIN_SECRET_LENGTH = 4


class SecretMasker:
    """
    Thread-safe registry of values that must never be shown.

    Registrations are counted so concurrent runs sharing a token do not
    unmask each other when one of them finishes.
    """

    def __init__(self) -> None:
        self._secrets: Counter = Counter()
        self._lock = threading.Lock()

    def register(self, value: str) -> None:
        if value and len(value) >= _MIN_SECRET_LENGTH:
            with self._lock:
                self._secrets[value] += 1

    def unregister(self, value: str) -> None:
        with self._lock:
            if self._secrets[value] <= 1:
                self._secrets.pop(value, None)
            else:
                self._secrets[value] -= 1

    def mask(self, text: str) -> str:
        if not text:
            return text
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, MASK)
        return text

    def __len__(self) -> int:
        with self._lock:
            return len(self._secrets)


# Process-wide masker used by the logging filter and the stage executor
masker = SecretMasker()


class SecretMaskingFilter(logging.Filter):
    """
    Logging filter that renders the record and masks secrets in it.

    Attached tracebacks are rendered here too (into ``exc_text``) so the
    exception message is masked before any formatter sees it.
    """

    _traceback_formatter = logging.Formatter()

    def __init__(self, secret_masker: SecretMasker = masker) -> None:
        super().__init__()
        self.secret_masker = secret_masker

    def filter(self, record: logging.LogRecord) -> bool:
        if len(self.secret_masker):
            record.msg = self.secret_masker.mask(record.getMessage())
            record.args = None
            if record.exc_info:
                if not record.exc_text:
                    record.exc_text = self._traceback_formatter.formatException(record.exc_info)
                record.exc_info = None
            if record.exc_text:
                record.exc_text = self.secret_masker.mask(record.exc_text)
            if record.stack_info:
                record.stack_info = self.secret_masker.mask(record.stack_info)
        return True
