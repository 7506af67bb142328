# File: examples/flask_app.py

"""
Example: the identify-sync API on Flask.

Uses the same IDENTIFY_SYNC_* configuration as examples/main.py.
"""

import logging

try:
    from flask import g, jsonify
except ImportError:
    print("Failed to import Flask.")
    print("Please install with: pip install 'identify-sync[flask,sqlite]'")
    exit(1)

from identify_sync.flask_middleware.flask_identify import create_flask_app
from identify_sync.flask_middleware.tools import flask_require_auth

logging.basicConfig(level=logging.INFO)

app = create_flask_app()


@app.route("/favorites")
@flask_require_auth
def favorites():
    return jsonify(owner=g.user.email, favorites=[])


if __name__ == "__main__":
    app.run(port=5000, debug=True)
