#!/usr/bin/env python3
"""Launch the step counter API server."""
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parent

if __name__ == "__main__":
    import uvicorn

    print("=" * 60)
    print("Starting StepCounter API on http://127.0.0.1:8000")
    print("Press Ctrl+C to stop")
    print("=" * 60)
    print()

    uvicorn.run(
        "stepcounter.main:app",
        app_dir=str(BACKEND_ROOT / "src"),
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
