#!/usr/bin/env python3
"""
Face Recognition System - Main Entry Point

Run this file to start the face recognition system.
"""

import sys
import os

# Make the face_gallery package importable without installing it
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from face_gallery.main import main

if __name__ == '__main__':
    sys.exit(main())
