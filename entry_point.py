import uvicorn

from recon_engine.api import create_app, setup_logging
from recon_engine.config import get_settings

app = create_app()

if __name__ == "__main__":
    settings = get_settings()
    setup_logging()
    uvicorn.run(app, host=settings.host, port=settings.port)
