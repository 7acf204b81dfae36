"""mDNS service advertisement for the AirSync receiver.

The measuring app browses ``_airsync._tcp.local.`` and reads the TXT record
to find the receiver's API root and what it can do.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field, replace

from zeroconf import IPVersion
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)

RECEIVER_SERVICE_TYPE = "_airsync._tcp.local."
PROTOCOL_VERSION = "1"
API_PATH = "/api"
# DNS-SD instance names are a single label
MAX_INSTANCE_NAME_BYTES = 63


def instance_name(name: str) -> str:
    """Make ``name`` usable as a DNS-SD instance label."""
    cleaned = " ".join(name.replace(".", " ").split()) or "AirSync"
    encoded = cleaned.encode()[:MAX_INSTANCE_NAME_BYTES]
    return encoded.decode(errors="ignore")


@dataclass
class AdvertisementConfig:
    """What the receiver publishes about itself."""

    receiver_id: str
    name: str
    port: int
    capabilities: list[str] = field(default_factory=lambda: ["calibration"])

    def properties(self) -> dict[str, str]:
        """TXT record contents."""
        return {
            "name": self.name,
            "ver": PROTOCOL_VERSION,
            "api": API_PATH,
            "caps": ",".join(self.capabilities),
            "id": self.receiver_id,
        }

    def service_info(self, hostname: str) -> AsyncServiceInfo:
        return AsyncServiceInfo(
            RECEIVER_SERVICE_TYPE,
            f"{instance_name(self.name)}.{RECEIVER_SERVICE_TYPE}",
            port=self.port,
            properties=self.properties(),
            server=f"{hostname}.local.",
        )


class ReceiverAdvertisement:
    """Publishes the receiver API via mDNS for as long as it runs."""

    def __init__(self, config: AdvertisementConfig) -> None:
        self._config = config
        self._zeroconf: AsyncZeroconf | None = None
        self._info: AsyncServiceInfo | None = None

    @property
    def config(self) -> AdvertisementConfig:
        return self._config

    async def start(self) -> None:
        """Register the service. Calling it again while registered is a no-op."""
        if self._info is not None:
            return
        if self._zeroconf is None:
            self._zeroconf = AsyncZeroconf(ip_version=IPVersion.All)

        info = self._config.service_info(socket.gethostname())
        try:
            await self._zeroconf.async_register_service(info)
        except Exception:
            await self.stop()
            raise
        self._info = info
        logger.info(
            "Advertising %s as %s on port %d",
            self._config.receiver_id,
            info.name,
            self._config.port,
        )

    async def rename(self, name: str) -> None:
        """Re-register under a new display name."""
        if name == self._config.name:
            return
        self._config = replace(self._config, name=name)
        if self._zeroconf is None:
            return
        await self._unregister()
        await self.start()

    async def stop(self) -> None:
        """Withdraw the service and close the zeroconf instance."""
        if self._zeroconf is None:
            return
        await self._unregister()
        await self._zeroconf.async_close()
        self._zeroconf = None
        logger.debug("Service advertisement stopped")

    async def _unregister(self) -> None:
        info, self._info = self._info, None
        if info is None or self._zeroconf is None:
            return
        try:
            await self._zeroconf.async_unregister_service(info)
        except Exception:
            logger.exception("Error unregistering %s", info.name)

    async def __aenter__(self) -> ReceiverAdvertisement:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()
