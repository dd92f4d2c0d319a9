from __future__ import annotations

from gamestack.adapters.base import WorkloadAdapter
from gamestack.adapters.hytale import HytaleAdapter
from gamestack.adapters.minecraft import MinecraftAdapter
from gamestack.infra.aws_runtime import AwsRuntimeClient
from gamestack.settings import ControllerSettings


def create_runtime(settings: ControllerSettings) -> AwsRuntimeClient:
    """Build the one control-plane client shared by every adapter."""

    return AwsRuntimeClient(
        settings.aws.region,
        ecs_endpoint=settings.aws.ecs_endpoint,
        s3_endpoint=settings.aws.s3_endpoint,
    )


def build_adapters(*, settings: ControllerSettings, runtime: AwsRuntimeClient | None) -> list[WorkloadAdapter]:
    return [
        MinecraftAdapter(settings=settings.minecraft, runtime=runtime),
        HytaleAdapter(),
    ]
