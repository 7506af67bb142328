# File: examples/main.py

"""
Example: the identify-sync API on FastAPI.

Configuration comes from IDENTIFY_SYNC_* environment variables or a .env file:

    IDENTIFY_SYNC_FIREBASE_PROJECT_ID=ubatuba-guias
    IDENTIFY_SYNC_DATABASE_URL=sqlite+aiosqlite:///./identify_sync.db
    IDENTIFY_SYNC_SESSION_BACKEND=database

Run with:
    python examples/main.py
"""

import logging
from typing import Optional

try:
    import uvicorn
    from fastapi import Depends
except ImportError:
    print("Failed to import FastAPI or uvicorn.")
    print("Please install with: pip install 'identify-sync[fastapi,sqlite]'")
    exit(1)

from identify_sync.shared.models import UserRecord
from identify_sync.fastapi_middleware.app import create_app
from identify_sync.fastapi_middleware.tools import get_current_user, require_auth

logging.basicConfig(level=logging.INFO)

app = create_app()


@app.get("/beaches")
async def beaches(user: Optional[UserRecord] = Depends(get_current_user)):
    # Public endpoint with optional personalization
    greeting = f"Bem-vindo, {user.first_name}!" if user else "Bem-vindo!"
    return {"message": greeting, "beaches": ["Praia do Félix", "Praia Vermelha do Norte"]}


@app.get("/favorites")
async def favorites(user: UserRecord = Depends(require_auth)):
    return {"owner": user.email, "favorites": []}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
