"""FastAPI backend for panobundle."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from panobundle import __version__
from routers import scenes, solve, synthetic

app = FastAPI(
    title="panobundle Backend",
    description="Rotation-only bundle adjustment for fisheye panorama rigs",
    version=__version__,
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scenes.router)
app.include_router(solve.router)
app.include_router(synthetic.router)


@app.get("/healthz")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
async def get_version() -> dict[str, str]:
    """Get version information."""
    return {"version": __version__}


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Run panobundle backend server")
    parser.add_argument("--port", type=int, default=8000, help="Port to run server on")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    uvicorn.run("main:app", host="127.0.0.1", port=args.port, reload=args.reload)
