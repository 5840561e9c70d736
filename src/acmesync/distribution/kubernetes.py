"""Kubernetes secret store.

Writes ``kubernetes.io/tls`` secrets (``tls.crt`` / ``tls.key``) with
the official ``kubernetes`` client.  The bundle's content hash is kept
in the ``acmesync.io/content-hash`` annotation so unchanged bundles are
detected with a single read.
"""

from __future__ import annotations

import logging
from typing import Any

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from acmesync.distribution.base import (
    CONTENT_HASH_ANNOTATION,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    REQUEST_ID_ANNOTATION,
    SecretStore,
    SecretStoreError,
)

log = logging.getLogger(__name__)

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500


def _store_error(exc: ApiException, action: str, namespace: str, name: str) -> SecretStoreError:
    status = exc.status or 0
    msg = f"Failed to {action} secret {namespace}/{name}: HTTP {status} {exc.reason}"
    return SecretStoreError(
        msg,
        retryable=status >= _HTTP_SERVER_ERROR or status in (0, _HTTP_CONFLICT, _HTTP_TOO_MANY_REQUESTS),
    )


# Connection refused, TLS failures, read timeouts and exhausted retries.
_TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


def _transport_error(exc: Exception, action: str, namespace: str, name: str) -> SecretStoreError:
    return SecretStoreError(
        f"Failed to {action} secret {namespace}/{name}: {type(exc).__name__}: {exc}",
        retryable=True,
    )


class KubernetesSecretStore(SecretStore):
    """:class:`SecretStore` backed by the Kubernetes core/v1 API.

    Parameters
    ----------
    api:
        A ``CoreV1Api`` instance.  Built from *kubeconfig* or the
        in-cluster service account when omitted.
    kubeconfig:
        Path to a kubeconfig file.
    in_cluster:
        Load the in-cluster service account configuration.
    labels:
        Extra labels set on every secret.

    """

    def __init__(
        self,
        api: Any = None,  # noqa: ANN401
        *,
        kubeconfig: str | None = None,
        in_cluster: bool = False,
        labels: dict[str, str] | None = None,
    ) -> None:
        if api is None:
            if in_cluster:
                k8s_config.load_incluster_config()
            else:
                k8s_config.load_kube_config(config_file=kubeconfig)
            api = k8s_client.CoreV1Api()
        self._api = api
        self._labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE, **(labels or {})}

    def read_hash(self, namespace: str, name: str) -> str | None:
        try:
            secret = self._api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as exc:
            if exc.status == _HTTP_NOT_FOUND:
                return None
            raise _store_error(exc, "read", namespace, name) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport_error(exc, "read", namespace, name) from exc
        annotations = (secret.metadata.annotations or {}) if secret.metadata else {}
        return annotations.get(CONTENT_HASH_ANNOTATION)

    def _body(
        self,
        namespace: str,
        name: str,
        *,
        cert_pem: str,
        key_pem: str,
        content_hash: str,
        request_id: str,
    ) -> k8s_client.V1Secret:
        return k8s_client.V1Secret(
            api_version="v1",
            kind="Secret",
            type="kubernetes.io/tls",
            metadata=k8s_client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(self._labels),
                annotations={
                    CONTENT_HASH_ANNOTATION: content_hash,
                    REQUEST_ID_ANNOTATION: request_id,
                },
            ),
            string_data={"tls.crt": cert_pem, "tls.key": key_pem},
        )

    def write(
        self,
        namespace: str,
        name: str,
        *,
        cert_pem: str,
        key_pem: str,
        content_hash: str,
        request_id: str,
    ) -> None:
        body = self._body(
            namespace,
            name,
            cert_pem=cert_pem,
            key_pem=key_pem,
            content_hash=content_hash,
            request_id=request_id,
        )
        try:
            self._api.replace_namespaced_secret(name=name, namespace=namespace, body=body)
        except ApiException as exc:
            if exc.status != _HTTP_NOT_FOUND:
                raise _store_error(exc, "replace", namespace, name) from exc
            try:
                self._api.create_namespaced_secret(namespace=namespace, body=body)
            except ApiException as create_exc:
                raise _store_error(create_exc, "create", namespace, name) from create_exc
            except _TRANSPORT_ERRORS as create_exc:
                raise _transport_error(create_exc, "create", namespace, name) from create_exc
            log.info("Created secret %s/%s", namespace, name)
            return
        except _TRANSPORT_ERRORS as exc:
            raise _transport_error(exc, "replace", namespace, name) from exc
        log.info("Updated secret %s/%s", namespace, name)

    def delete(self, namespace: str, name: str) -> None:
        try:
            self._api.delete_namespaced_secret(name=name, namespace=namespace)
        except ApiException as exc:
            if exc.status == _HTTP_NOT_FOUND:
                return
            raise _store_error(exc, "delete", namespace, name) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport_error(exc, "delete", namespace, name) from exc
        log.info("Deleted secret %s/%s", namespace, name)
