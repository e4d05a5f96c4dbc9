"""Interfaces and base classes for public file hosting backends."""

from __future__ import annotations

import abc

from watermark_relay.schemas.pipeline import SourceAsset


class HostingBackend(abc.ABC):
    """Template for backends that publish an asset at a public URL."""

    name: str = "backend"

    @abc.abstractmethod
    async def submit(self, asset: SourceAsset) -> str:
        """Upload the asset and return the URL the host reports for it."""

    def submission_url(self, url: str) -> str:
        """URL shape to hand to the inference service."""

        return url

    def alternate_url(self, url: str) -> str | None:  # pragma: no cover - hooks
        """Other URL shape for the same file, if the host exposes one."""

        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
