"""Logging filter that stamps records with the current request id.

Referenced from ``LOGGING["filters"]`` so the JSON formatter can always
render ``%(request_id)s``, including for records emitted by management
commands (where no request exists and the placeholder ``-`` is used).
"""

from logging import Filter, LogRecord
from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
