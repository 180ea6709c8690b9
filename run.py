#!/usr/bin/env python3
"""
Helper script to run the HCP calendar sync service with correct Python module paths.
This script ensures the src directory is in the Python path.
"""

import os
import sys
import uvicorn

# Add the src directory to Python path to make the hcp_sync package discoverable
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from hcp_sync.utils.config import settings

if __name__ == "__main__":
    uvicorn.run("hcp_sync.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
