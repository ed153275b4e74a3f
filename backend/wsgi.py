# backend/wsgi.py
from storyhub import create_app

app = create_app()
