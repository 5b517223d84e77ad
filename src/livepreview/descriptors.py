# src/livepreview/descriptors.py
"""
Build descriptor rendering.

All functions here are pure: the same runtime kind and port always yield
byte-identical text. The dev server inside the container listens on the
same port that is published on the host.
"""

from enum import Enum


class RuntimeKind(str, Enum):
    """Project flavours with a dedicated Dockerfile template."""

    REACT = "react"
    VUE = "vue"
    NODE = "node"

    @classmethod
    def parse(cls, value: "str | RuntimeKind | None") -> "RuntimeKind":
        """Normalize a free-form project type; unknown values fall back to NODE."""
        if isinstance(value, RuntimeKind):
            return value
        if not value:
            return cls.NODE
        normalized = value.strip().lower()
        normalized = _ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls.NODE


_ALIASES = {
    "react-todo": "react",
    "reactjs": "react",
    "create-react-app": "react",
    "vuejs": "vue",
    "vite-vue": "vue",
    "nodejs": "node",
    "express": "node",
}

NODE_IMAGE = "node:18-alpine"

_COMMON_HEAD = """FROM {image}

WORKDIR /app

# Install dependencies first so they are cached between builds
COPY package*.json ./
RUN npm install

COPY . .

EXPOSE {port}

ENV PORT={port}
ENV NODE_ENV=development
"""

_REACT_TAIL = """ENV WATCHPACK_POLLING=true
ENV CHOKIDAR_USEPOLLING=true
ENV HOST=0.0.0.0

RUN echo '#!/bin/sh' > /app/start.sh && \\
    echo 'echo "Starting React development server..."' >> /app/start.sh && \\
    echo 'npm start -- --host 0.0.0.0 --port $PORT' >> /app/start.sh && \\
    chmod +x /app/start.sh

CMD ["/app/start.sh"]
"""

_VUE_TAIL = """
CMD ["npm", "run", "dev", "--", "--host", "0.0.0.0", "--port", "{port}"]
"""

_NODE_TAIL = """
CMD ["npm", "start"]
"""

_TITLES = {
    RuntimeKind.REACT: "React App Dockerfile",
    RuntimeKind.VUE: "Vue App Dockerfile",
    RuntimeKind.NODE: "Generic Node.js App Dockerfile",
}

_TAILS = {
    RuntimeKind.REACT: _REACT_TAIL,
    RuntimeKind.VUE: _VUE_TAIL,
    RuntimeKind.NODE: _NODE_TAIL,
}


def _check_port(port: int) -> None:
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise ValueError(f"Invalid port: {port!r}")


def render_dockerfile(runtime_kind: "str | RuntimeKind", port: int) -> str:
    """
    Render the Dockerfile for a project.

    Args:
        runtime_kind: Project flavour; unknown values use the generic Node template
        port: Port the dev server listens on (also published on the host)

    Returns:
        Dockerfile text
    """
    _check_port(port)
    kind = RuntimeKind.parse(runtime_kind)
    head = _COMMON_HEAD.format(image=NODE_IMAGE, port=port)
    tail = _TAILS[kind].replace("{port}", str(port))
    return f"# {_TITLES[kind]}\n{head}{tail}"


def render_compose(runtime_kind: "str | RuntimeKind", port: int, container_name: str) -> str:
    """
    Render a docker-compose file equivalent to the preview container.

    It is written next to the Dockerfile so a preview can be reproduced by
    hand with ``docker compose up``; the orchestrator itself never uses it.
    """
    _check_port(port)
    kind = RuntimeKind.parse(runtime_kind)
    return f"""# {kind.value} preview: {container_name}
version: '3.8'
services:
  app:
    build: .
    container_name: {container_name}
    ports:
      - "{port}:{port}"
    environment:
      - PORT={port}
      - NODE_ENV=development
    volumes:
      - .:/app
      - /app/node_modules
    networks:
      - preview-network

networks:
  preview-network:
    driver: bridge
"""


def render_dockerignore() -> str:
    return "node_modules\nnpm-debug.log\n.git\nDockerfile\ndocker-compose.yml\n.dockerignore\n"
