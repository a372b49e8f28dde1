from __future__ import annotations

import uvicorn

from ..graph.client import build_knowledge_graph
from ..settings import settings
from .app import create_app


def main(host: str | None = None, port: int | None = None) -> None:
    graph = build_knowledge_graph(settings)
    graph.initialize()
    app = create_app(graph)

    config = uvicorn.Config(
        app,
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        log_level=(settings.log_level or "info").lower(),
        loop="uvloop",
        http="httptools",
    )
    server = uvicorn.Server(config)

    try:
        server.run()
    finally:
        graph.close()


if __name__ == "__main__":
    main()
