"""Resource registry backing the resources capability."""

import logging
from typing import Awaitable, Callable

from mcp_bridge.mcp.errors import RESOURCE_NOT_FOUND, McpError
from mcp_bridge.mcp.models import Resource, ResourceContents

logger = logging.getLogger(__name__)

ResourceReader = Callable[[], Awaitable[str]]


class ResourceDefinition:
    """A registered resource with its reader."""

    def __init__(
        self,
        uri: str,
        name: str,
        reader: ResourceReader,
        description: str | None = None,
        mime_type: str = "text/plain",
    ):
        self.uri = uri
        self.name = name
        self.reader = reader
        self.description = description
        self.mime_type = mime_type

    def to_mcp_resource(self) -> Resource:
        return Resource(
            uri=self.uri,
            name=self.name,
            description=self.description,
            mimeType=self.mime_type,
        )


class ResourceRegistry:
    """Maps resource URIs to readers."""

    def __init__(self) -> None:
        self._resources: dict[str, ResourceDefinition] = {}

    def register(
        self,
        uri: str,
        name: str,
        reader: ResourceReader,
        description: str | None = None,
        mime_type: str = "text/plain",
    ) -> None:
        if "://" not in uri:
            raise ValueError(f"Resource URI must include a scheme: {uri!r}")
        if uri in self._resources:
            logger.warning(f"Resource '{uri}' already registered, overwriting")
        self._resources[uri] = ResourceDefinition(
            uri=uri,
            name=name,
            reader=reader,
            description=description,
            mime_type=mime_type,
        )
        logger.info(f"Registered resource: {uri}")

    def get(self, uri: str) -> ResourceDefinition | None:
        return self._resources.get(uri)

    def list_resources(self) -> list[Resource]:
        return [resource.to_mcp_resource() for resource in self._resources.values()]

    async def read(self, uri: str) -> ResourceContents:
        resource = self.get(uri)
        if resource is None:
            raise McpError(RESOURCE_NOT_FOUND, f"Resource not found: {uri}", {"uri": uri})
        text = await resource.reader()
        return ResourceContents(uri=uri, mimeType=resource.mime_type, text=text)

    @property
    def resource_count(self) -> int:
        return len(self._resources)
