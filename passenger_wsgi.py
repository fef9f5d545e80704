#!/usr/bin/python3
"""
Passenger WSGI configuration for cPanel deployment
"""
import sys
import os

# Add the current directory to the Python path
sys.path.insert(0, os.path.dirname(__file__))

# Import the Flask application
from app import app as application

if __name__ == '__main__':
    print(f"Python version: {sys.version}")
    print(f"Python executable: {sys.executable}")
    print(f"Current working directory: {os.getcwd()}")

    from config import Config
    print(f"Storage backend: {Config.STORAGE_BACKEND}")

    engine = application.extensions.get('rental_engine')
    if engine is None:
        print("Rental engine failed to initialize; check the environment variables")
    else:
        print(f"Rental engine ready with {type(engine.store).__name__}")
        print(f"Application: {application}")
