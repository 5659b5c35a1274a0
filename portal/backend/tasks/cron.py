import logging
import httpx

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.identity import IdentityClient
from ..services.provisioning_service import ProvisioningService

logger = logging.getLogger(__name__)


async def reconcile_orphaned_identities(redis_client: RedisClient, db_client: AsyncPostgresClient,
                                        http_client: httpx.AsyncClient) -> int:
    """
    Periodic job: deletes identities left behind by registrations whose rollback failed.
    Identities that still cannot be deleted stay queued for the next run.
    """
    logger.info("Running reconcile_orphaned_identities...")
    service = ProvisioningService(
        db_client=db_client,
        identity_client=IdentityClient(http_client=http_client),
        redis_client=redis_client,
    )
    try:
        return await service.reconcile_orphans()
    except Exception as e:
        logger.error(f"Reconciliation run failed: {e}", exc_info=True)
        return 0
