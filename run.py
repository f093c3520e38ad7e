"""Local development server for the payments API.

Usage:
    python run.py

Reads .env first so RAZORPAY_* and DATABASE_URL are available to the
config classes. PORT overrides the default 5001.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from noxpay import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=int(os.environ.get("PORT", 5001)))
