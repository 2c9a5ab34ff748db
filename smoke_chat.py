"""Manual smoke test against a running server: ``python smoke_chat.py [user_id] [project_id]``.

Authenticates, joins the project, sends one message and prints every frame
received until the echo of that message arrives.
"""
import asyncio
import json
import sys

import websockets


async def main(user_id: int, project_id: int) -> None:
    async with websockets.connect("ws://localhost:8000/ws") as ws:
        await ws.send(json.dumps({"type": "authenticate", "userId": user_id, "projectId": project_id}))
        print(f"Auth: {await ws.recv()}")
        print(f"Join: {await ws.recv()}")

        await ws.send(json.dumps({
            "type": "send_message",
            "projectId": project_id,
            "senderId": user_id,
            "content": "Hello from Python!",
        }))

        while True:
            frame = json.loads(await ws.recv())
            print(f"Received: {frame}")
            if frame["type"] in ("new_message", "error"):
                break


if __name__ == "__main__":
    user = int(sys.argv[1]) if len(sys.argv) > 1 else 1
    project = int(sys.argv[2]) if len(sys.argv) > 2 else 1
    asyncio.run(main(user, project))
