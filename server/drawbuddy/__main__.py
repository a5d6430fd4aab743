"""python -m drawbuddy 启动服务。"""

from __future__ import annotations

import uvicorn

from drawbuddy.app import create_app
from drawbuddy.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
