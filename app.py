"""
ASGI entrypoint

    uvicorn app:app --host 0.0.0.0 --port 8000
"""
import os

from mentionradar.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
