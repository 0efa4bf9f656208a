"""Dead-letter queue module."""

from .queue import DLQ_KEY_FIELD, DeadLetterQueue, DeadLetterResult, IDeadLetterQueue, dlq_key_of

__all__ = ["DLQ_KEY_FIELD", "DeadLetterQueue", "DeadLetterResult", "IDeadLetterQueue", "dlq_key_of"]
