import logging
from datetime import datetime
from typing import Union

from certanchor.models import DocumentRecord, VerificationResult, VerificationStatus
from certanchor.utils.datetime_utils import to_unix_seconds

logger = logging.getLogger(__name__)


def classify(record: DocumentRecord, now: Union[datetime, int, float]) -> VerificationResult:
    """
    Classify a registry record at time `now`.

    Checks run in a fixed order: unknown id, revoked, expired, valid.
    A revoked document is reported as revoked even after it has expired.
    """
    now_ts = to_unix_seconds(now)

    if record.is_sentinel:
        return VerificationResult(
            status=VerificationStatus.NOT_FOUND,
            document_id=record.id,
            checked_at=now_ts,
        )

    if record.revoked:
        status = VerificationStatus.REVOKED
    elif record.valid_until > 0 and now_ts > record.valid_until:
        status = VerificationStatus.EXPIRED
    else:
        status = VerificationStatus.VALID

    logger.debug(f"Classified {record.id} as {status.value}")
    return VerificationResult(status=status, document_id=record.id, record=record, checked_at=now_ts)
