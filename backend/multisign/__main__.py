import uvicorn

from multisign.config import Settings
from multisign.main import create_app

settings = Settings()
uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
