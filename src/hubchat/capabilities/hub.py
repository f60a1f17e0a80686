"""Home hub capabilities and the hub state they read and mutate."""

from __future__ import annotations

import asyncio
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from hubchat.capabilities.registry import CapabilityDescriptor, CapabilityRegistry, EmptyInput, capability
from hubchat.types import CallMetadata, CapabilityArtifact


class Climate(BaseModel):
    low: float
    high: float


class Light(BaseModel):
    name: str
    status: bool


class Lock(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    is_locked: bool = Field(alias="isLocked")


class Hub(BaseModel):
    """Quick summary of temperature, lights and locks."""

    climate: Climate
    lights: list[Light]
    locks: list[Lock]


def default_hub() -> Hub:
    return Hub(
        climate=Climate(low=23, high=25),
        lights=[
            Light(name="patio", status=True),
            Light(name="kitchen", status=False),
            Light(name="garage", status=True),
        ],
        locks=[Lock(name="back door", is_locked=True)],
    )


class HubStore:
    """Owned hub state; one instance is injected per application."""

    def __init__(self, hub: Hub | None = None) -> None:
        self._hub = hub or default_hub()
        self._lock = asyncio.Lock()

    @property
    def hub(self) -> Hub:
        return self._hub.model_copy(deep=True)

    async def replace(self, hub: Hub) -> Hub:
        async with self._lock:
            self._hub = hub.model_copy(deep=True)
            return self.hub


class UpdateHubInput(BaseModel):
    hub: Hub


class ViewUsageInput(BaseModel):
    type: Literal["electricity", "water", "gas"]


def _hub_payload(hub: Hub) -> dict[str, object]:
    return {"view": "hub", "hub": hub.model_dump(mode="json", by_alias=True)}


def build_hub_capabilities(store: HubStore) -> list[CapabilityDescriptor]:
    """Build the hub capability set bound to one HubStore."""

    @capability("viewCameras", description="view current active cameras")
    async def view_cameras(_params: EmptyInput, meta: CallMetadata) -> CapabilityArtifact:
        return CapabilityArtifact(name=meta.name, payload={"view": "cameras"})

    @capability(
        "viewHub",
        description="view the hub that contains current quick summary and actions for temperature, lights, and locks",
    )
    async def view_hub(_params: EmptyInput, meta: CallMetadata) -> CapabilityArtifact:
        return CapabilityArtifact(name=meta.name, payload=_hub_payload(store.hub))

    @capability("updateHub", description="update the hub with new values", input_model=UpdateHubInput)
    async def update_hub(params: UpdateHubInput, meta: CallMetadata) -> CapabilityArtifact:
        hub = await store.replace(params.hub)
        return CapabilityArtifact(name=meta.name, payload=_hub_payload(hub))

    @capability(
        "viewUsage",
        description="view current usage for electricity, water, or gas",
        input_model=ViewUsageInput,
    )
    async def view_usage(params: ViewUsageInput, meta: CallMetadata) -> CapabilityArtifact:
        return CapabilityArtifact(name=meta.name, payload={"view": "usage", "type": params.type})

    return [view_cameras, view_hub, update_hub, view_usage]


def build_hub_registry(store: HubStore) -> CapabilityRegistry:
    return CapabilityRegistry(build_hub_capabilities(store))
