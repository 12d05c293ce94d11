import asyncio
import logging

from dotenv import load_dotenv
from nio import (
    AsyncClient,
    DeleteDevicesAuthResponse,
    DeleteDevicesError,
    DevicesError,
    InviteMemberEvent,
    JoinError,
    LoginError,
    MatrixRoom,
    RoomLeaveError,
    SyncError,
)

from unfurl.config import BotConfig, load_config
from unfurl.logging_config import setup_logging
from unfurl.matrix_adapter import EmbedHandler
from unfurl.tasks import cancel_pending

load_dotenv()
logger = logging.getLogger(__name__)

SYNC_TIMEOUT_MS = 30000


def create_client(config: BotConfig) -> AsyncClient:
    return AsyncClient(config.homeserver, config.username)


async def login(client: AsyncClient, config: BotConfig) -> None:
    resp = await client.login(config.password, device_name=config.display_name)
    if isinstance(resp, LoginError):
        logger.error("Login failed: %s", resp.message)
        raise SystemExit(f"Could not log into {config.username}: {resp.message}")
    logger.info("Logged in successfully!")
    logger.info(
        "server: '%s', username: '%s', display name: '%s'",
        config.homeserver, config.username, config.display_name,
    )


async def initial_sync(client: AsyncClient) -> None:
    """Sync once so history from before startup never reaches the handlers."""
    resp = await client.sync(timeout=SYNC_TIMEOUT_MS, full_state=True)
    if isinstance(resp, SyncError):
        logger.error("Initial sync failed: %s", resp.message)
        raise SystemExit(f"Failed the initial event sync: {resp.message}")


async def delete_old_devices(client: AsyncClient, config: BotConfig) -> None:
    """Remove devices left behind by earlier logins, keeping the current one."""
    logger.info("Deleting old devices")
    resp = await client.devices()
    if isinstance(resp, DevicesError):
        logger.warning("Could not list devices: %s", resp.message)
        return

    old_devices = [d.id for d in resp.devices if d.id != client.device_id]
    if not old_devices:
        logger.info("No old devices to delete")
        return

    resp = await client.delete_devices(old_devices)
    if isinstance(resp, DeleteDevicesAuthResponse):
        # The homeserver wants user-interactive auth, answer with the password.
        auth = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": config.username},
            "password": config.password,
            "session": resp.session,
        }
        resp = await client.delete_devices(old_devices, auth)
    if isinstance(resp, DeleteDevicesError):
        logger.warning("Failed to delete old devices: %s", resp.message)
        return
    logger.info("Deleted %d old devices", len(old_devices))


async def answer_invite(client: AsyncClient, config: BotConfig, room_id: str) -> bool:
    """Join *room_id* if it is on the allow-list, reject the invite otherwise."""
    if config.allows_room(room_id):
        logger.info("Joining room %s", room_id)
        resp = await client.join(room_id)
        if isinstance(resp, JoinError):
            logger.error("Failed to join room with id: %s and error: %s", room_id, resp.message)
            return False
        return True

    logger.info("Rejecting invite to room %s", room_id)
    resp = await client.room_leave(room_id)
    if isinstance(resp, RoomLeaveError):
        logger.warning("Failed to reject invite to %s: %s", room_id, resp.message)
    return False


async def handle_stale_invites(client: AsyncClient, config: BotConfig) -> None:
    logger.info("Handling pending invites")
    for room_id in list(client.invited_rooms):
        await answer_invite(client, config, room_id)
    logger.info("Finished handling pending invites")


def register_invite_handler(client: AsyncClient, config: BotConfig) -> None:
    async def on_invite(room: MatrixRoom, event: InviteMemberEvent) -> None:
        if event.state_key != client.user_id or event.membership != "invite":
            return
        logger.info("Got invite to room: '%s' sent by '%s'", room.display_name, event.sender)
        await answer_invite(client, config, room.room_id)

    client.add_event_callback(on_invite, InviteMemberEvent)


async def main() -> None:
    setup_logging()
    config = load_config()
    client = create_client(config)
    try:
        await login(client, config)
        await initial_sync(client)
        await delete_old_devices(client, config)
        await handle_stale_invites(client, config)

        register_invite_handler(client, config)
        EmbedHandler(client).register()

        logger.info("Starting sync loop")
        await client.sync_forever(timeout=SYNC_TIMEOUT_MS)
    finally:
        await cancel_pending()
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
