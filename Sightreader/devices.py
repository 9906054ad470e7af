from typing import Optional, Union

import sounddevice as sd


def list_input_devices() -> list[dict]:
    inputs = []
    for i, d in enumerate(sd.query_devices()):
        if d.get("max_input_channels", 0) > 0:
            inputs.append({"index": i, "name": d.get("name", f"device_{i}")})
    return inputs


def find_input_device(name_like: Optional[str]) -> Optional[Union[int, str]]:
    """Resolve a device index or name substring (e.g. 'usb', '3') to a sounddevice id."""
    if not name_like:
        return None
    if name_like.isdigit():
        return int(name_like)
    s = name_like.lower()
    for d in list_input_devices():
        if s in d["name"].lower():
            return d["index"]
    return None
