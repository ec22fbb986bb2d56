# backend/wsgi.py
from ricemart import create_app

app = create_app()
