"""
Bleak-based transport.

Cross-platform BLE discovery, passive advertisement watching and GATT access
using the bleak library.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Sequence

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from .models import DiscoveredDevice, DiscoveryOptions, RawSample
from .transport import (
    CancelToken,
    DeviceNotFound,
    PickerDismissed,
    Subscription,
    Transport,
)

logger = logging.getLogger('proxwatch.bleak')

DEFAULT_DISCOVERY_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 10.0


def strongest_signal(candidates: Sequence[DiscoveredDevice]) -> Optional[DiscoveredDevice]:
    """Default picker: the candidate with the highest RSSI."""
    if not candidates:
        return None
    return max(candidates, key=lambda d: d.rssi if d.rssi is not None else -999)


class BleakTransport(Transport):
    """
    Transport backed by bleak.

    Connection handles are BleakClient instances. Remote-disconnect callbacks
    are fanned out from the client's disconnected_callback.
    """

    def __init__(
        self,
        discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ):
        self._discovery_timeout = discovery_timeout
        self._connect_timeout = connect_timeout
        self._disconnect_callbacks: dict[int, list[Callable[[], None]]] = {}

    async def discover(self, options: DiscoveryOptions) -> DiscoveredDevice:
        timeout = options.timeout or self._discovery_timeout

        if options.address:
            logger.info(f"Looking for {options.address} (timeout={timeout}s)")
            device = await BleakScanner.find_device_by_address(options.address, timeout=timeout)
            if device is None:
                raise DeviceNotFound(f"Device {options.address} did not respond")
            return DiscoveredDevice(identity=device.address, name=device.name)

        logger.info(f"Starting discovery (timeout={timeout}s)")
        found = await BleakScanner.discover(
            timeout=timeout,
            return_adv=True,
            service_uuids=options.service_uuids or None,
        )

        candidates = [
            DiscoveredDevice(
                identity=device.address,
                name=adv.local_name or device.name,
                rssi=adv.rssi,
            )
            for device, adv in found.values()
        ]

        if options.name:
            wanted = options.name.lower()
            candidates = [c for c in candidates if c.name and wanted in c.name.lower()]

        logger.info(f"Discovery complete: {len(candidates)} candidate(s)")
        if not candidates:
            raise DeviceNotFound("No compatible device responded")

        chooser = options.chooser or strongest_signal
        selected = chooser(candidates)
        if selected is None:
            raise PickerDismissed("Device selection dismissed")
        return selected

    async def watch(self, identity: str, token: CancelToken) -> AsyncIterator[RawSample]:
        queue: asyncio.Queue = asyncio.Queue()
        target = identity.upper()

        def detection_callback(device: BLEDevice, adv_data: AdvertisementData) -> None:
            if token.cancelled or device.address.upper() != target:
                return
            queue.put_nowait(RawSample(rssi=adv_data.rssi))

        scanner = BleakScanner(detection_callback=detection_callback)
        await scanner.start()
        logger.info(f"Watching advertisements from {identity}")

        loop = asyncio.get_running_loop()

        def on_cancel() -> None:
            queue.put_nowait(None)
            loop.create_task(self._stop_scanner(scanner, identity))

        token.add_callback(on_cancel)
        return self._drain(queue, token)

    @staticmethod
    async def _drain(queue: asyncio.Queue, token: CancelToken) -> AsyncIterator[RawSample]:
        while True:
            sample = await queue.get()
            if sample is None or token.cancelled:
                return
            yield sample

    @staticmethod
    async def _stop_scanner(scanner: BleakScanner, identity: str) -> None:
        try:
            await scanner.stop()
            logger.info(f"Stopped watching {identity}")
        except Exception as e:
            logger.warning(f"Error stopping scanner: {e}")

    async def connect(self, identity: str) -> BleakClient:
        callbacks: list[Callable[[], None]] = []

        def disconnected_callback(dropped: BleakClient) -> None:
            logger.info(f"Link to {identity} dropped")
            self._disconnect_callbacks.pop(id(dropped), None)
            for callback in list(callbacks):
                callback()

        client = BleakClient(
            identity,
            disconnected_callback=disconnected_callback,
            timeout=self._connect_timeout,
        )
        await client.connect()
        self._disconnect_callbacks[id(client)] = callbacks
        logger.info(f"Connected to {identity}")
        return client

    async def write_characteristic(
        self,
        handle: BleakClient,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
    ) -> None:
        await handle.write_gatt_char(characteristic_uuid, data, response=False)

    async def read_characteristic(
        self,
        handle: BleakClient,
        service_uuid: str,
        characteristic_uuid: str,
    ) -> bytes:
        return bytes(await handle.read_gatt_char(characteristic_uuid))

    def on_remote_disconnect(self, handle: BleakClient, callback: Callable[[], None]) -> Subscription:
        callbacks = self._disconnect_callbacks.setdefault(id(handle), [])
        callbacks.append(callback)

        def release() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return Subscription(release)

    async def disconnect(self, handle: BleakClient) -> None:
        self._disconnect_callbacks.pop(id(handle), None)
        await handle.disconnect()
