from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
import uvicorn

from api.main import configure_logging
from engine.config import load_config


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    if config.state_file:
        config.state_file.parent.mkdir(parents=True, exist_ok=True)

    host = os.getenv("APP_HOST", "0.0.0.0")
    port = int(os.getenv("APP_PORT", "8000"))

    print(f"\nStarting simulated trading engine ({config.broker_mode} broker) at http://{host}:{port}\n")
    uvicorn.run("api.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
