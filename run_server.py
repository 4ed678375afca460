import uvicorn

from backend.config import ServiceConfig
from backend.logging_config import setup_logging

if __name__ == "__main__":
    config = ServiceConfig.from_env()
    setup_logging(config.log_level)

    print("Starting Session Timeline Server...")
    print(f"Stacks stored in: {config.stacks_dir}")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "backend.api.server:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_config=None,
    )
