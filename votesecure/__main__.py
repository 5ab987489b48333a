"""Run the ledger service: ``python -m votesecure``."""
import uvicorn

from . import config

if __name__ == "__main__":
    uvicorn.run("votesecure.service:app", host=config.SERVICE_HOST, port=config.SERVICE_PORT)
