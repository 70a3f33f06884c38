#!/usr/bin/env python3
"""
Artisan Coordinator - Main Entry Point
The actual FastAPI app is in services/coordinator/app/main.py
"""

import sys
import os
import subprocess

def main():
    """Main entry point for deployment"""
    print("Starting Artisan Coordinator...")

    # Change to the coordinator directory
    coordinator_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'services', 'coordinator')
    os.chdir(coordinator_dir)

    # Start the FastAPI server
    cmd = [
        sys.executable, '-m', 'uvicorn',
        'app.main:app',
        '--host', '0.0.0.0',
        '--port', os.getenv('PORT', '8080')
    ]

    print(f"Running: {' '.join(cmd)}")
    subprocess.run(cmd)

if __name__ == '__main__':
    main()
