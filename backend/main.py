"""
FastAPI Backend for CommCare App Forge

API Structure:
- /api/packages/validate - Upload a .ccz, auto-fix, validate, export
- /api/packages/generate - Background generate/validate run
- /api/runs/{id} - Run status, progress events and result
- /api/exports/{filename} - Download exported artifacts
- /api/packages/import - CommCare HQ import hand-off
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import HOST, PORT, CORS_ORIGINS, GEMINI_API_KEY
from forge.core import JavaToolchainProbe
from routers import packages

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Initialize FastAPI app
app = FastAPI(
    title="CommCare App Forge API",
    description="Generate, validate, auto-repair and export CommCare .ccz packages",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(packages.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "CommCare App Forge API",
        "version": "1.0.0",
        "endpoints": {
            "validate": "/api/packages/validate",
            "generate": "/api/packages/generate",
            "runs": "/api/runs/{id}",
            "exports": "/api/exports/{filename}",
            "import": "/api/packages/import"
        },
        "docs": "/docs"
    }


@app.get("/api/health")
def health_check():
    """Health check endpoint (blocking: may run `java -version`)"""
    toolchain = JavaToolchainProbe().check()
    return {
        "status": "healthy",
        "version": "1.0.0",
        "ai": "ready" if GEMINI_API_KEY else "not configured",
        "cli": "available" if toolchain.available else toolchain.reason
    }


if __name__ == "__main__":
    import uvicorn

    print(f"""
    ╔════════════════════════════════════════════════════╗
    ║  CommCare App Forge API                            ║
    ║  Generate · Validate · Auto-fix · Export           ║
    ╚════════════════════════════════════════════════════╝

    🚀 Starting server...
    📡 API: http://{HOST}:{PORT}
    📖 Docs: http://{HOST}:{PORT}/docs

    Press Ctrl+C to stop
    """)

    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        log_level="info"
    )
