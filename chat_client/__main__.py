"""Console client for the QuickChat relay.

Type a line to send it to the room. Commands:

    /attach <path>   attach an image or video to the next message
    /call <id>       call another connection by its call ID
    /answer          answer the incoming call
    /decline         decline the incoming call
    /hangup          end the current call
    /me              show your call ID
    /quit            leave
"""

import argparse
import asyncio
import os
import sys

from chat_client.connection import SignalingConnection
from chat_client.errors import SessionError
from chat_client.peer import LocalMedia, aiortc_peer_factory
from chat_client.session import ClientSession, attachment_from_file
from constants import SERVER_URL
from logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def render(session: ClientSession, event, data):
    if event == "receive_message":
        message = session.messages[-1]
        if message.content.kind.value == "text":
            print(f"[{message.timestamp}] {message.author}: {message.content.body}")
        else:
            print(f"[{message.timestamp}] {message.author} sent a {message.content.kind.value} ({message.content.mime_type})")
    elif event == "connected":
        print(f"My call ID: {session.me}")
    elif event == "callUser" and session.incoming_call:
        print(f"{session.incoming_call.name or session.incoming_call.caller} is calling... (/answer or /decline)")
    elif event == "callAccepted":
        print("Call connected")
    elif event == "callEnded":
        print(f"Call ended ({data.get('reason')})")
    elif event == "callRejected":
        print(f"Call rejected ({data.get('reason')})")
    elif event == "error":
        print(f"Error: {data.get('message')}")


async def read_commands(session: ClientSession):
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        line = line.strip()
        command, _, argument = line.partition(" ")
        try:
            if command == "/quit":
                return
            elif command == "/me":
                print(f"My call ID: {session.me}")
            elif command == "/attach":
                session.select_attachment(attachment_from_file(argument.strip()))
                print(f"Attached {session.attachment.name}; press enter to send")
            elif command == "/call":
                await session.call(argument)
            elif command == "/answer":
                await session.answer()
            elif command == "/decline":
                await session.decline()
            elif command == "/hangup":
                await session.hang_up()
            else:
                if line:
                    session.composer_text = line
                message = await session.send()
                if message is not None and message.content.kind.value == "text":
                    print(f"[{message.timestamp}] you: {message.content.body}")
                elif message is not None:
                    print(f"[{message.timestamp}] you sent a {message.content.kind.value}")
        except (SessionError, OSError) as e:
            print(f"Error: {e}")
        except Exception as e:
            logger.error(f"Command {command} failed: {e}", exc_info=True)
            print(f"Error: {e}")


async def main(args):
    connection = SignalingConnection(args.url)
    session = ClientSession(connection, LocalMedia(), aiortc_peer_factory)
    session.listeners.append(lambda event, data: render(session, event, data))

    async with connection:
        receiver = asyncio.create_task(session.run())
        try:
            await session.join(args.username, args.room)
            await read_commands(session)
        except SessionError as e:
            print(f"Error: {e}")
        finally:
            await session.hang_up()
            receiver.cancel()
            try:
                await receiver
            except asyncio.CancelledError:
                pass


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="QuickChat console client")
    parser.add_argument("username", help="Display name shown to the room")
    parser.add_argument("room", help="Room to join")
    parser.add_argument("--url", default=SERVER_URL, help="Relay WebSocket URL")
    args = parser.parse_args()

    setup_logging(log_level=os.getenv("LOG_LEVEL", "WARNING"), log_file=os.getenv("LOG_FILE", None))
    asyncio.run(main(args))
