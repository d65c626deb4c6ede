"""
UniChat Backend Runner
Run with: python run.py
"""

import uvicorn
from unichat.config import settings


if __name__ == "__main__":
    print(f"""
    UniChat messaging service

    Starting server at http://{settings.HOST}:{settings.PORT}

    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    uvicorn.run(
        "unichat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
