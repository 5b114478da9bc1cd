"""FastAPI REST API for EventRelay.

Example:
    ```python
    import uvicorn
    from eventrelay.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn eventrelay.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router, set_service

__all__ = [
    "app",
    "create_app",
    "router",
    "set_service",
]
