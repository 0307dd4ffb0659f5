#!/usr/bin/env python3
"""Runner script to start the responder chat console."""
import os
import sys
import subprocess

# Set working directory
script_dir = os.path.dirname(os.path.abspath(__file__))
console_dir = os.path.join(script_dir, "console")
os.chdir(console_dir)

# Set environment
os.environ.setdefault("BACKEND_URL", "http://localhost:8000")

# Run console; extra arguments (e.g. --user-id 2) are passed through
subprocess.run([sys.executable, "messenger.py", *sys.argv[1:]])
