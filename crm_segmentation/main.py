"""Main FastAPI application entrypoint."""
import uvicorn
from crm_segmentation.api import app
from crm_segmentation.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "crm_segmentation.api:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True
    )
