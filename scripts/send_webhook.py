import asyncio
import os
import sys
import time
import uuid

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

import httpx

from post_search_server.auth.signature import build_signature_header
from post_search_server.config import get_settings


USAGE = "usage: send_webhook.py <post_created|post_updated|post_deleted> <post id> [markdown file]"


async def main(argv):
    if len(argv) < 2:
        print(USAGE)
        return 2

    event_type, document_id = argv[0], argv[1]
    if event_type != "post_deleted" and len(argv) < 3:
        print(f"{event_type} needs a markdown file\n{USAGE}")
        return 2
    settings = get_settings()
    server_url = os.getenv("SERVER_URL", "http://localhost:8000")

    data = {"documentId": document_id, "eventType": event_type}
    if len(argv) > 2:
        with open(argv[2], encoding="utf-8") as f:
            data["content"] = f.read()

    body = {"metadata": {"uuid": str(uuid.uuid4())}, "data": data}
    header = build_signature_header(
        int(time.time() * 1000),
        body,
        settings.webhook_secret.get_secret_value(),
    )

    print(f"Sending {event_type} for {document_id} to {server_url}/webhook...")
    async with httpx.AsyncClient(timeout=30.0) as client:
        resp = await client.post(
            f"{server_url}/webhook",
            json=body,
            headers={settings.webhook_signature_header: header},
        )

    print(f"{resp.status_code} {resp.text}")
    return 0 if resp.is_success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
