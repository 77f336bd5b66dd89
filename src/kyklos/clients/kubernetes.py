"""
Kubernetes client for the objects a TimeWindowScaler touches.

This is the only place kubernetes ``ApiException`` is handled: a 404 becomes
``NotFoundError`` and anything else ``TransientRemoteError``, so callers
deal with one error taxonomy.

The kubernetes client is synchronous, so every call runs in the default
executor with a request timeout and never blocks the event loop.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

import kubernetes
from kubernetes.client.rest import ApiException

from ..config import Config
from ..exceptions import NotFoundError, ScaleError, TransientRemoteError

LOG = logging.getLogger(__name__)


def _translate(e: ApiException, what: str, namespace: str, name: str, error_class=TransientRemoteError):
    context = {"namespace": namespace, "name": name, "status": e.status}
    if e.status == 404:
        return NotFoundError(f"{what} {namespace}/{name} not found", context)
    return error_class(f"Failed to access {what} {namespace}/{name}: {e.reason}", context)


class KubernetesClient:
    """Client for Kubernetes API interactions."""

    def __init__(self, api_client: Optional[kubernetes.client.ApiClient] = None):
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.custom_api = kubernetes.client.CustomObjectsApi(self.api_client)
        self.apps_api = kubernetes.client.AppsV1Api(self.api_client)
        self.core_api = kubernetes.client.CoreV1Api(self.api_client)

    @classmethod
    def from_environment(cls) -> "KubernetesClient":
        """Build a client from in-cluster config, falling back to the local kubeconfig"""
        try:
            kubernetes.config.load_incluster_config()
            LOG.info("Loaded in-cluster Kubernetes config")
        except kubernetes.config.ConfigException:
            kubernetes.config.load_kube_config()
            LOG.info("Loaded local Kubernetes config")
        return cls()

    async def _call(self, method: Callable, **kwargs) -> Any:
        """Run a blocking API method off the event loop"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(method, _request_timeout=Config.API_REQUEST_TIMEOUT, **kwargs)
        )

    # ------------------------------------------------------------------
    # TimeWindowScaler
    # ------------------------------------------------------------------

    async def get_scaler(self, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return await self._call(
                self.custom_api.get_namespaced_custom_object,
                group=Config.CRD_GROUP,
                version=Config.CRD_VERSION,
                namespace=namespace,
                plural=Config.CRD_PLURAL,
                name=name
            )
        except ApiException as e:
            raise _translate(e, "TimeWindowScaler", namespace, name)

    async def update_scaler_finalizers(self, namespace: str, name: str, finalizers: List[str],
                                       resource_version: Optional[str] = None) -> Dict[str, Any]:
        """Write the complete finalizer list, guarded by resourceVersion when given"""
        metadata: Dict[str, Any] = {"finalizers": finalizers}
        if resource_version:
            metadata["resourceVersion"] = resource_version
        try:
            return await self._call(
                self.custom_api.patch_namespaced_custom_object,
                group=Config.CRD_GROUP,
                version=Config.CRD_VERSION,
                namespace=namespace,
                plural=Config.CRD_PLURAL,
                name=name,
                body={"metadata": metadata}
            )
        except ApiException as e:
            raise _translate(e, "TimeWindowScaler", namespace, name)

    async def update_scaler_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._call(
                self.custom_api.patch_namespaced_custom_object_status,
                group=Config.CRD_GROUP,
                version=Config.CRD_VERSION,
                namespace=namespace,
                plural=Config.CRD_PLURAL,
                name=name,
                body={"status": status}
            )
        except ApiException as e:
            raise _translate(e, "TimeWindowScaler", namespace, name)

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    async def get_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        """Get the replica-related fields of a deployment"""
        try:
            deployment = await self._call(self.apps_api.read_namespaced_deployment, name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, "Deployment", namespace, name)

        return {
            "name": deployment.metadata.name,
            "namespace": deployment.metadata.namespace,
            "replicas": deployment.spec.replicas,
        }

    async def scale_deployment(self, namespace: str, name: str, replicas: int):
        """Set the absolute replica count through the scale subresource"""
        try:
            await self._call(
                self.apps_api.patch_namespaced_deployment_scale,
                name=name,
                namespace=namespace,
                body={"spec": {"replicas": replicas}}
            )
        except ApiException as e:
            raise _translate(e, "Deployment", namespace, name, error_class=ScaleError)
        LOG.info(f"Scaled deployment {namespace}/{name} to {replicas} replicas")

    # ------------------------------------------------------------------
    # ConfigMaps
    # ------------------------------------------------------------------

    async def get_config_map_data(self, namespace: str, name: str) -> Dict[str, str]:
        try:
            config_map = await self._call(self.core_api.read_namespaced_config_map, name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, "ConfigMap", namespace, name)
        return dict(config_map.data or {})

    def close(self):
        if self.api_client:
            self.api_client.close()
            LOG.info("Kubernetes clients cleaned up")
