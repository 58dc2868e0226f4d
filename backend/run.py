#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Starts uvicorn with autoreload against ``consultdesk.main:app`` from the
backend directory so ``backend/.env`` is picked up.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn  # noqa: E402

if __name__ == "__main__":
    print("Starting ConsultDesk development server")
    print("Access at: http://localhost:8000")
    print("API Docs: http://localhost:8000/docs")

    uvicorn.run("consultdesk.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
