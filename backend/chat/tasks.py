import logging
from celery import shared_task

from .exceptions import TransientFailure

logger = logging.getLogger(__name__)


@shared_task(
    name='chat.purge_hosted_attachment',
    bind=True,
    max_retries=5,
    default_retry_delay=10,
)
def purge_hosted_attachment(self, url):
    """
    Delete the object-store copy of an attachment whose message was purged.
    Retries with exponential backoff while the store is unreachable.
    """
    from .storage import ObjectStore

    store = ObjectStore()
    if not store.enabled:
        logger.info(f'Object store not configured, nothing to purge for {url}')
        return False
    try:
        return store.delete(url)
    except TransientFailure as exc:
        # 10s, 20s, 40s, ...
        retry_delay = 10 * (2 ** self.request.retries)
        logger.warning(f'Purge of {url} failed, retrying in {retry_delay}s')
        raise self.retry(exc=exc, countdown=retry_delay)
