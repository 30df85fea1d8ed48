"""Command routes — /commands/* forwarded to the VCS server.

Commands are fire-and-forget from the view's point of view: the resulting
state change arrives later as a push event (or on the next poll). A failed
command is reported as an error notification and a 502 response.
"""

import logging
from typing import Awaitable

from fastapi import APIRouter, HTTPException

from .frequency_editor import FrequencyValidationError, validate_frequency
from .models import (
    Coalition,
    FrequencyRequest,
    FrequencySettings,
    GeneralSettings,
    Notification,
    ReasonRequest,
    ServerSettings,
    SettingsState,
)
from .remote_client import RemoteError

router = APIRouter(prefix="/commands", tags=["commands"])
logger = logging.getLogger(__name__)


def _get_console():
    from .main import get_console
    return get_console()


async def _run(title: str, call: Awaitable[str | None]) -> dict:
    try:
        message = await call
    except RemoteError as e:
        logger.error("%s: %s", title, e)
        _get_console().notifications.notify(title, str(e), "error")
        raise
    return {"ok": True, "message": message}


def _current_frequencies() -> FrequencySettings:
    cache = _get_console().get_sync("settings").cache
    if not cache.has_value:
        raise HTTPException(status_code=503, detail="Settings have not been loaded yet")
    value: SettingsState = cache.value
    return value.frequencies


# --- Server ---


@router.post("/server/start")
async def start_server():
    return await _run("Failed to start server", _get_console().remote.start_server())


@router.post("/server/stop")
async def stop_server():
    return await _run("Failed to stop server", _get_console().remote.stop_server())


# --- Clients ---


@router.post("/clients/{client_id}/kick")
async def kick_client(client_id: str, body: ReasonRequest):
    return await _run("Kick failed", _get_console().remote.kick(client_id, body.reason))


@router.post("/clients/{client_id}/ban")
async def ban_client(client_id: str, body: ReasonRequest):
    return await _run("Ban failed", _get_console().remote.ban(client_id, body.reason))


@router.delete("/bans/{ban_id}")
async def unban_client(ban_id: str):
    return await _run("Unban failed", _get_console().remote.unban(ban_id))


@router.post("/clients/{client_id}/mute")
async def mute_client(client_id: str):
    return await _run("Mute failed", _get_console().remote.mute(client_id))


@router.post("/clients/{client_id}/unmute")
async def unmute_client(client_id: str):
    return await _run("Unmute failed", _get_console().remote.unmute(client_id))


# --- Coalitions ---


@router.post("/coalitions")
async def add_coalition(coalition: Coalition):
    return await _run("Coalition failed to save", _get_console().remote.add_coalition(coalition))


@router.put("/coalitions/{name}")
async def update_coalition(name: str, coalition: Coalition):
    if coalition.name != name:
        raise HTTPException(status_code=422, detail="Coalition name does not match the path")
    return await _run("Coalition failed to save", _get_console().remote.update_coalition(coalition))


@router.delete("/coalitions/{name}")
async def remove_coalition(name: str):
    return await _run("Coalition failed to save", _get_console().remote.remove_coalition(name))


# --- Settings ---


@router.put("/settings/general")
async def save_general_settings(general: GeneralSettings):
    return await _run("Failed to save settings", _get_console().remote.save_general_settings(general))


@router.put("/settings/servers")
async def save_server_settings(servers: ServerSettings):
    return await _run("Failed to save settings", _get_console().remote.save_server_settings(servers))


@router.put("/settings/frequencies")
async def save_frequencies(frequencies: FrequencySettings):
    try:
        cleaned = FrequencySettings(
            global_frequencies=[validate_frequency(f) for f in frequencies.global_frequencies],
            test_frequencies=[validate_frequency(f) for f in frequencies.test_frequencies],
        )
    except FrequencyValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return await _run("Failed to save settings", _get_console().remote.save_frequencies(cleaned))


@router.post("/frequencies")
async def add_frequency(body: FrequencyRequest):
    """Append one frequency to the current list and save the whole list."""
    try:
        frequency = validate_frequency(body.frequency)
    except FrequencyValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    current = _current_frequencies()
    global_frequencies = list(current.global_frequencies)
    test_frequencies = list(current.test_frequencies)
    target = global_frequencies if body.frequency_type == "global" else test_frequencies
    target.append(frequency)
    updated = FrequencySettings(global_frequencies=global_frequencies, test_frequencies=test_frequencies)
    return await _run("Failed to save settings", _get_console().remote.save_frequencies(updated))


@router.delete("/frequencies/{frequency_type}/{index}")
async def remove_frequency(frequency_type: str, index: int):
    current = _current_frequencies()
    global_frequencies = list(current.global_frequencies)
    test_frequencies = list(current.test_frequencies)
    if frequency_type == "global":
        target = global_frequencies
    elif frequency_type == "test":
        target = test_frequencies
    else:
        raise HTTPException(status_code=404, detail=f"Unknown frequency list: {frequency_type}")
    if not 0 <= index < len(target):
        raise HTTPException(status_code=404, detail=f"No {frequency_type} frequency at index {index}")
    del target[index]
    updated = FrequencySettings(global_frequencies=global_frequencies, test_frequencies=test_frequencies)
    return await _run("Failed to save settings", _get_console().remote.save_frequencies(updated))


# --- Notifications ---


@router.post("/notify")
async def notify(notification: Notification):
    """Forward an alert to the server so every console receives it."""
    return await _run("Notify failed", _get_console().remote.notify(notification))
