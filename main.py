"""
Rx Gateway: FastAPI entrypoint.
Goal: take a prescription upload or a chat turn, hand it to the model, and
stream the answer back without keeping anything server-side.

Run:
- uvicorn main:app --host 0.0.0.0 --port 8000
- No OPENAI_API_KEY? Every endpoint still answers, with the demo fallback.
"""

import os

from rxgateway.app import create_app
from rxgateway.config import configure_logging, load_settings


# ----------------------------
# Setup
# ----------------------------

settings = load_settings()
configure_logging(settings.log_level)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
