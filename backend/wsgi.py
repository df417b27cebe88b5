# backend/wsgi.py
from passvault import create_app

app = create_app()
