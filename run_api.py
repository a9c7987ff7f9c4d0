#!/usr/bin/env python3
"""
Script to run the DataChain FastAPI application.
"""

import os
import uvicorn

HOST = os.getenv("API_HOST", "0.0.0.0")
PORT = int(os.getenv("API_PORT", "8000"))

# Run the FastAPI application
if __name__ == "__main__":
    uvicorn.run("datachain.api:app", host=HOST, port=PORT, reload=os.getenv("API_RELOAD", "false") == "true")
