# src/acctstore/api/__main__.py
from __future__ import annotations

import uvicorn

from acctstore.env import load_dotenv_if_present
from acctstore.structured_logging import configure_structured_logging


def main() -> None:
    # Load .env early so ACCTSTORE_* vars exist before config is read.
    load_dotenv_if_present()

    from acctstore.api.app import create_app
    from acctstore.config import load_store_config

    cfg = load_store_config()
    configure_structured_logging(cfg.log_level)

    uvicorn.run(create_app(cfg), host=cfg.api_host, port=int(cfg.api_port), log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
