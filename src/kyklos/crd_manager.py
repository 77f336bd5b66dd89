"""
Startup check that the TimeWindowScaler CRD is registered and served.
"""

import asyncio
import logging
from typing import Any, Optional

import kubernetes
from kubernetes.client.rest import ApiException

from .config import Config
from .health import set_component_health

LOG = logging.getLogger(__name__)


def is_established(crd: Any) -> bool:
    """Whether the API server reports the CRD as Established"""
    conditions = (crd.status.conditions if crd is not None and crd.status else None) or []
    return any(c.type == "Established" and c.status == "True" for c in conditions)


class CRDManager:
    """Verifies the TimeWindowScaler CRD before handlers start.

    Installing the CRD is left to the deployment manifests.
    """

    def __init__(self, api_client: Optional[kubernetes.client.ApiClient] = None):
        self.extensions_api = kubernetes.client.ApiextensionsV1Api(api_client)

    def _read(self, crd_name: str) -> Optional[Any]:
        try:
            return self.extensions_api.read_custom_resource_definition(
                name=crd_name, _request_timeout=Config.API_REQUEST_TIMEOUT
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def _read_async(self, crd_name: str) -> Optional[Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, crd_name)

    async def crd_exists(self, crd_name: str = Config.CRD_NAME) -> bool:
        return await self._read_async(crd_name) is not None

    async def wait_for_crd_ready(self, crd_name: str = Config.CRD_NAME,
                                 timeout: int = Config.CRD_READY_TIMEOUT,
                                 interval: float = 1.0) -> bool:
        """Poll until the CRD is Established, at most ``timeout`` attempts ``interval`` apart"""
        LOG.info(f"Waiting up to {timeout} attempts for CRD {crd_name} to be established...")

        for attempt in range(timeout):
            if attempt:
                await asyncio.sleep(interval)
            try:
                crd = await self._read_async(crd_name)
            except ApiException as e:
                LOG.warning(f"Error reading CRD {crd_name}: {e.status} {e.reason}")
                continue

            if is_established(crd):
                LOG.info(f"CRD {crd_name} is established")
                set_component_health("crd_manager", True)
                return True
            LOG.debug(f"CRD {crd_name} {'not established yet' if crd else 'not found'}")

        LOG.error(f"CRD {crd_name} was not established in time")
        set_component_health("crd_manager", False)
        return False
