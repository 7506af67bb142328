# File: examples/client_session.py

"""
Example: the headless client runtime.

Signs in to Firebase with a Google ID token, lets the AuthStateStore open the
backend session, and evaluates an admin page guard.

    python examples/client_session.py <firebase-web-api-key> <google-id-token>
"""

import asyncio
import logging
import sys

from identify_sync.shared.models import UserType
from identify_sync.client.backend import BackendClient
from identify_sync.client.guards import GuardOutcome, PageGuard
from identify_sync.client.provider import FirebaseRestProvider
from identify_sync.client.state import AuthStateStore

logging.basicConfig(level=logging.INFO)


async def main(api_key: str, google_id_token: str):
    provider = FirebaseRestProvider(api_key)
    backend = BackendClient("http://localhost:8000")
    store = AuthStateStore(provider, backend)
    guard = PageGuard(required_role=UserType.ADMIN)

    store.subscribe(lambda snapshot: print(f"-> {snapshot.phase.value}"))
    await store.start()

    await provider.sign_in_with_google(google_id_token)
    await store.wait_idle()

    decision = guard.evaluate(store.snapshot)
    if decision.outcome == GuardOutcome.REDIRECT and decision.command:
        await decision.command.execute(lambda target: print(f"navigate to {target}"), store.notifier)
    elif decision.should_render:
        print("Admin page rendered")

    await store.logout()
    await store.stop()
    await backend.aclose()
    await provider.aclose()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2]))
