"""Stable per-device identifier."""

import uuid
from pathlib import Path

DEVICE_ID_FILE = "device_id"


def get_device_id(data_dir: Path) -> str:
    """Return this device's identifier, generating and persisting it on first use.

    Args:
        data_dir: Directory that survives app restarts

    Returns:
        UUID string, identical across calls for the same data directory
    """
    path = Path(data_dir) / DEVICE_ID_FILE
    if path.exists():
        device_id = path.read_text().strip()
        if device_id:
            return device_id

    path.parent.mkdir(parents=True, exist_ok=True)
    device_id = str(uuid.uuid4())
    path.write_text(device_id)
    return device_id
