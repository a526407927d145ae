import asyncio
import logging
import os
import signal
from pathlib import Path

from dotenv import load_dotenv

from jagwax.archive import ArchiveStore
from jagwax.content import ContentConfig
from jagwax.dispatcher import DEFAULT_MAX_MEDIA_BYTES, CommandDispatcher
from jagwax.groups import WelcomeRegistry
from jagwax.pairing import PairingRegistry
from jagwax.session import SessionManager
from transports.discord_bot import run_discord_bot
from transports.telegram_bot import TelegramTransport

log = logging.getLogger("jagwax")


def _parse_int(value, fallback: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


async def shutdown(
    session,
    stores,
    *,
    telegram_transport=None,
    telegram_task=None,
    discord_task=None,
):
    """Stop the transports, then close every store even if a transport already died."""
    log.info("shutting down")
    try:
        session.cancel()

        if telegram_transport:
            await telegram_transport.stop()

        if discord_task:
            discord_task.cancel()
            try:
                await discord_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                log.exception("Discord transport failed: %s", exc)

        if telegram_task:
            try:
                await telegram_task
            except Exception as exc:
                log.exception("Telegram transport failed: %s", exc)
    finally:
        for store in stores:
            store.close()


async def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s :: %(message)s")

    telegram_token = os.getenv("TELEGRAM_TOKEN")
    discord_token = os.getenv("DISCORD_TOKEN")
    db_path = os.getenv("JAGWAX_DB", "jagwax.db")
    content_path = Path(os.getenv("JAGWAX_CONTENT", "mem/content.yaml"))
    owner_ids = [x.strip() for x in os.getenv("OWNER_IDS", "").split(",") if x.strip()]
    max_media_bytes = _parse_int(os.getenv("MAX_MEDIA_BYTES"), DEFAULT_MAX_MEDIA_BYTES)
    guild_id_raw = os.getenv("DISCORD_GUILD_ID")
    guild_id = int(guild_id_raw) if guild_id_raw and guild_id_raw.isdigit() else None

    if not telegram_token and not discord_token:
        raise SystemExit("Missing required environment variables.")

    archive = ArchiveStore(db_path)
    registry = PairingRegistry(db_path)
    welcome = WelcomeRegistry(db_path)
    dispatcher = CommandDispatcher(
        archive,
        registry,
        content=ContentConfig(override_path=content_path),
        welcome=welcome,
        owner_ids=owner_ids,
        max_media_bytes=max_media_bytes,
    )

    stop_event = asyncio.Event()
    session = SessionManager(stop_event.set)

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    telegram_transport = None
    telegram_task = None
    discord_task = None
    if telegram_token:
        telegram_transport = TelegramTransport(dispatcher, telegram_token, on_ready=session.start)
        telegram_task = asyncio.create_task(telegram_transport.start())
    if discord_token:
        discord_task = asyncio.create_task(
            run_discord_bot(dispatcher, discord_token, guild_id, on_ready=session.start)
        )

    await stop_event.wait()
    await shutdown(
        session,
        (welcome, registry, archive),
        telegram_transport=telegram_transport,
        telegram_task=telegram_task,
        discord_task=discord_task,
    )


if __name__ == "__main__":
    asyncio.run(main())
