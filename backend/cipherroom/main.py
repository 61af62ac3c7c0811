# cipherroom/main.py

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cipherroom.api import chat
from cipherroom.utils.logger import setup_logger

app = FastAPI(
    title="CipherRoom Backend",
    version="1.0.0",
    description="Room-based end-to-end encrypted chat relay"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)

setup_logger()


@app.exception_handler(StarletteHTTPException)
async def error_body_handler(request: Request, exc: StarletteHTTPException):
    # Clients only ever look for an "error" key
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Register routers; the Netlify path serves older browser clients
app.include_router(chat.router, prefix="/api", tags=["Chat"])
app.include_router(chat.router, prefix="/.netlify/functions", tags=["Chat"])


@app.get("/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
