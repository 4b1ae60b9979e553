"""In-memory registry of devices synchronized during this process lifetime."""

from __future__ import annotations

from typing import Iterator


class DeviceRegistry:
    """Mapping of device id -> display name.

    Starts empty and is never persisted. Only the reconciler mutates it,
    and only after the sink has confirmed the corresponding call.
    """

    def __init__(self, initial: dict[str, str | None] | None = None) -> None:
        self._devices: dict[str, str | None] = dict(initial or {})

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __iter__(self) -> Iterator[str]:
        return iter(self._devices)

    def __len__(self) -> int:
        return len(self._devices)

    def ids(self) -> set[str]:
        return set(self._devices)

    def name_of(self, device_id: str) -> str | None:
        return self._devices.get(device_id)

    def remember(self, device_id: str, display_name: str | None) -> None:
        """Add a device, or refresh its display name."""
        self._devices[device_id] = display_name

    def forget(self, device_id: str) -> str | None:
        """Remove a device and return its last known display name."""
        return self._devices.pop(device_id, None)

    def snapshot(self) -> dict[str, str | None]:
        return dict(self._devices)
