"""Control-plane client: ECS service scaling and S3 object storage.

ECS calls are hand-signed JSON-RPC requests (SigV4 over httpx) instead of a
full SDK client; S3 goes through a regular boto3 client. Both fail loudly:
every failure is raised as a gamestack error with the operation in the
message.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import Any

import boto3
import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import ReadOnlyCredentials
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gamestack.core.context import OperationContext
from gamestack.errors import (
    ConfigurationError,
    DeadlineExceededError,
    GameStackError,
    InfrastructureError,
    InvalidInputError,
    ObjectNotFoundError,
    StabilizationTimeoutError,
)

logger = logging.getLogger(__name__)

ECS_TARGET_PREFIX = "AmazonEC2ContainerServiceV20141113."
ECS_CONTENT_TYPE = "application/x-amz-json-1.1"
DEFAULT_WAIT_POLL_SECONDS = 5.0
DEFAULT_STABLE_TIMEOUT_SECONDS = 600.0

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


class EcsDeployment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str | None = None
    rollout_state: str | None = Field(default=None, alias="rolloutState")
    desired_count: int = Field(default=0, alias="desiredCount")
    running_count: int = Field(default=0, alias="runningCount")
    pending_count: int = Field(default=0, alias="pendingCount")


class ServiceState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    service_name: str = Field(default="", alias="serviceName")
    status: str | None = None
    desired_count: int = Field(default=0, alias="desiredCount")
    running_count: int = Field(default=0, alias="runningCount")
    pending_count: int = Field(default=0, alias="pendingCount")
    deployments: list[EcsDeployment] = Field(default_factory=list)

    def is_stable(self) -> bool:
        if (self.status or "").strip().upper() == "DRAINING":
            return False
        if self.pending_count != 0 or self.running_count != self.desired_count:
            return False

        # Two or more deployments means a rollout is still in progress.
        if len(self.deployments) != 1:
            return False

        d = self.deployments[0]
        if d.pending_count != 0:
            return False
        if d.running_count != d.desired_count or d.running_count != self.desired_count:
            return False

        rollout = (d.rollout_state or "").strip().upper()
        return rollout in {"", "COMPLETED"}


class _DescribeServicesFailure(BaseModel):
    model_config = ConfigDict(extra="ignore")

    arn: str | None = None
    reason: str | None = None


class _DescribeServicesOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    services: list[ServiceState] = Field(default_factory=list)
    failures: list[_DescribeServicesFailure] = Field(default_factory=list)


def _require(**values: str) -> list[str]:
    cleaned = [v.strip() for v in values.values()]
    if any(not v for v in cleaned):
        raise InvalidInputError(f"{' and '.join(values)} are required")
    return cleaned


def _object_location(bucket: str, key: str) -> tuple[str, str]:
    bucket = (bucket or "").strip()
    key = (key or "").strip().strip("/")
    if not bucket or not key:
        raise InvalidInputError("bucket and key are required")
    return bucket, key


def is_object_not_found(exc: BaseException) -> bool:
    if isinstance(exc, ObjectNotFoundError):
        return True
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code", "")).strip()
        return code in _NOT_FOUND_CODES
    return False


def _storage_error(action: str, bucket: str, key: str, exc: BaseException) -> GameStackError:
    if is_object_not_found(exc):
        return ObjectNotFoundError(bucket, key)
    return InfrastructureError(f"s3 {action} s3://{bucket}/{key}: {exc}")


class AwsRuntimeClient:
    """Gateway to the ECS scheduler and the S3 object store.

    Built once at startup and passed into every adapter that needs it.
    """

    def __init__(
        self,
        region: str,
        *,
        session: boto3.Session | None = None,
        http_client: httpx.Client | None = None,
        s3_client: Any | None = None,
        ecs_endpoint: str | None = None,
        s3_endpoint: str | None = None,
        poll_interval: float = DEFAULT_WAIT_POLL_SECONDS,
    ) -> None:
        region = (region or "").strip()
        if not region:
            raise ConfigurationError("aws region is required")

        self.region = region
        self.poll_interval = poll_interval
        self._session = session or boto3.Session(region_name=region)
        self._http = http_client or httpx.Client(timeout=30.0)
        self._owns_http = http_client is None
        self._s3 = s3_client or self._session.client("s3", region_name=region, endpoint_url=s3_endpoint or None)
        self._ecs_endpoint = (ecs_endpoint or "").strip()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    @property
    def ecs_endpoint_url(self) -> str:
        if self._ecs_endpoint:
            return self._ecs_endpoint.rstrip("/") + "/"
        return f"https://ecs.{self.region}.amazonaws.com/"

    # ------------------------------------------------------------------
    # ECS
    # ------------------------------------------------------------------
    def set_service_desired_count(
        self,
        ctx: OperationContext,
        cluster: str,
        service: str,
        desired: int,
        *,
        force_new_deployment: bool = False,
    ) -> None:
        cluster, service = _require(cluster=cluster, service=service)

        payload: dict[str, Any] = {"cluster": cluster, "service": service, "desiredCount": desired}
        if force_new_deployment:
            payload["forceNewDeployment"] = True

        logger.info(
            "ecs update service cluster=%s service=%s desired=%s force=%s",
            cluster,
            service,
            desired,
            force_new_deployment,
        )
        self._ecs_json_rpc(ctx, "UpdateService", payload)

    def describe_service(self, ctx: OperationContext, cluster: str, service: str) -> ServiceState:
        cluster, service = _require(cluster=cluster, service=service)

        raw = self._ecs_json_rpc(ctx, "DescribeServices", {"cluster": cluster, "services": [service]})
        try:
            out = _DescribeServicesOutput.model_validate(raw)
        except ValidationError as e:
            raise InfrastructureError(f"decode ecs response DescribeServices: {e}") from e

        if out.failures:
            reason = (out.failures[0].reason or "").strip() or "unknown ecs describe failure"
            raise InfrastructureError(f"ecs describe service failure: {reason}")
        if not out.services:
            raise InfrastructureError(f"ecs service not found: {service}")
        return out.services[0]

    def wait_service_stable(
        self,
        ctx: OperationContext,
        cluster: str,
        service: str,
        timeout: float = DEFAULT_STABLE_TIMEOUT_SECONDS,
    ) -> ServiceState:
        """Poll DescribeServices until the service is stable.

        Describe failures propagate immediately. Running out of `timeout`
        raises StabilizationTimeoutError; the caller's own deadline or
        cancellation surfaces as DeadlineExceededError/OperationCancelledError.
        """

        cluster, service = _require(cluster=cluster, service=service)
        if timeout <= 0:
            timeout = DEFAULT_STABLE_TIMEOUT_SECONDS

        wait_ctx = ctx.with_timeout(timeout)
        try:
            while True:
                st = self.describe_service(wait_ctx, cluster, service)
                if st.is_stable():
                    logger.info(
                        "ecs service stable cluster=%s service=%s running=%s", cluster, service, st.running_count
                    )
                    return st
                wait_ctx.wait(self.poll_interval)
        except DeadlineExceededError as e:
            ctx.check()
            raise StabilizationTimeoutError(
                f"wait for ecs service stable: {service} not stable after {timeout:g}s"
            ) from e

    def _credentials(self) -> ReadOnlyCredentials:
        creds = self._session.get_credentials()
        if creds is None:
            raise ConfigurationError("no aws credentials available")
        try:
            return creds.get_frozen_credentials()
        except BotoCoreError as e:
            raise InfrastructureError(f"retrieve aws credentials: {e}") from e

    def _ecs_json_rpc(self, ctx: OperationContext, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        ctx.check()

        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        url = self.ecs_endpoint_url
        headers = {
            "Content-Type": ECS_CONTENT_TYPE,
            "X-Amz-Target": ECS_TARGET_PREFIX + operation,
            "X-Amz-Content-Sha256": hashlib.sha256(body).hexdigest(),
        }

        request = AWSRequest(method="POST", url=url, data=body, headers=headers)
        try:
            SigV4Auth(self._credentials(), "ecs", self.region).add_auth(request)
        except BotoCoreError as e:
            raise InfrastructureError(f"sign ecs request {operation}: {e}") from e

        kwargs: dict[str, Any] = {}
        rem = ctx.remaining()
        if rem is not None:
            kwargs["timeout"] = rem

        try:
            resp = self._http.post(url, content=body, headers=dict(request.headers.items()), **kwargs)
        except httpx.TimeoutException as e:
            if ctx.expired:
                raise DeadlineExceededError(f"ecs {operation}: operation deadline exceeded") from e
            raise InfrastructureError(f"do ecs request {operation}: {e}") from e
        except httpx.HTTPError as e:
            raise InfrastructureError(f"do ecs request {operation}: {e}") from e

        if resp.status_code >= 300:
            msg = resp.text.strip() or resp.reason_phrase
            raise InfrastructureError(f"ecs {operation} failed ({resp.status_code}): {msg}")

        if not resp.content:
            return {}
        try:
            decoded = resp.json()
        except ValueError as e:
            raise InfrastructureError(f"decode ecs response {operation}: {e}") from e
        return decoded if isinstance(decoded, dict) else {}

    # ------------------------------------------------------------------
    # S3
    # ------------------------------------------------------------------
    def put_bytes(self, ctx: OperationContext, bucket: str, key: str, data: bytes) -> None:
        bucket, key = _object_location(bucket, key)
        ctx.check()
        try:
            self._s3.put_object(Bucket=bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("put object", bucket, key, e) from e

    def get_bytes(self, ctx: OperationContext, bucket: str, key: str) -> bytes:
        bucket, key = _object_location(bucket, key)
        ctx.check()
        try:
            out = self._s3.get_object(Bucket=bucket, Key=key)
            body = out["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("get object", bucket, key, e) from e

    def put_string(self, ctx: OperationContext, bucket: str, key: str, value: str) -> None:
        self.put_bytes(ctx, bucket, key, value.encode("utf-8"))

    def get_string(self, ctx: OperationContext, bucket: str, key: str) -> str:
        return self.get_bytes(ctx, bucket, key).decode("utf-8")

    def upload_file(self, ctx: OperationContext, bucket: str, key: str, path: str | Path) -> None:
        bucket, key = _object_location(bucket, key)
        ctx.check()
        try:
            with open(path, "rb") as f:
                self._s3.put_object(Bucket=bucket, Key=key, Body=f)
        except OSError as e:
            raise InfrastructureError(f"open upload file {path}: {e}") from e
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("put object", bucket, key, e) from e

    def download_file(self, ctx: OperationContext, bucket: str, key: str, path: str | Path) -> None:
        bucket, key = _object_location(bucket, key)
        ctx.check()
        try:
            out = self._s3.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _storage_error("get object", bucket, key, e) from e

        dest = Path(path)
        body = out["Body"]
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(dest, "wb") as f:
                shutil.copyfileobj(body, f)
        except OSError as e:
            raise InfrastructureError(f"write destination file {dest}: {e}") from e
        except BotoCoreError as e:
            raise _storage_error("read object", bucket, key, e) from e
        finally:
            body.close()
